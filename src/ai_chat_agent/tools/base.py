"""
Base classes for tool providers.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from ..errors import ToolInvocationError
from ..llm.base import ToolDescriptor


def error_payload(message: str) -> str:
    """JSON error payload returned to the model instead of a tool result."""
    return json.dumps({"error": message, "status": "error"}, ensure_ascii=False)


def normalize_tool_result(tool_name: str, result: Any) -> dict[str, Any]:
    """Turn an MCP ``CallToolResult`` into a JSON object.

    The first text content block is used. Valid JSON objects pass through,
    anything else is wrapped as ``{"result": text}``.
    """
    text = None
    for block in getattr(result, "content", None) or []:
        if getattr(block, "type", None) == "text":
            text = block.text
            break

    if getattr(result, "isError", False):
        raise ToolInvocationError(tool_name, text or f"Tool '{tool_name}' returned an error")
    if text is None:
        raise ToolInvocationError(tool_name, f"Tool '{tool_name}' returned no text content")

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {"result": text}
    return parsed if isinstance(parsed, dict) else {"result": parsed}


class ToolProviderConnection(ABC):
    """An open session with one tool provider."""

    def __init__(self, name: str):
        self.name = name

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the session is still usable."""
        pass

    @abstractmethod
    async def list_tools(self) -> list[ToolDescriptor]:
        """List the provider's tools as currently advertised."""
        pass

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Invoke a tool and return its normalized JSON result.

        Raises ToolInvocationError when the tool reports a failure.
        """
        pass

    async def close(self) -> None:
        """Close the session."""
        return None
