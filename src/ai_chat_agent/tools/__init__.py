"""
Tools module: MCP tool providers and the registry the engine calls into.
"""

from .base import ToolProviderConnection, error_payload, normalize_tool_result
from .connection import McpConnection
from .manager import ToolProviderConnectionManager, connect_mcp
from .registry import RegistryStatistics, ToolRegistry

__all__ = [
    "ToolProviderConnection",
    "error_payload",
    "normalize_tool_result",
    "McpConnection",
    "ToolProviderConnectionManager",
    "connect_mcp",
    "RegistryStatistics",
    "ToolRegistry",
]
