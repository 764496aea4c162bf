"""
Tool registry for discovering and invoking provider tools.
"""

import json
from dataclasses import dataclass, field
from typing import Any

import structlog

from ..errors import AgentError
from ..llm.base import ToolDescriptor
from .base import error_payload
from .manager import ToolProviderConnectionManager

logger = structlog.get_logger()


@dataclass
class RegistryStatistics:
    """Summary of the tools known to the registry."""

    total_tools: int = 0
    tools_by_provider: dict[str, int] = field(default_factory=dict)
    tool_names: list[str] = field(default_factory=list)
    connectivity: dict[str, bool] = field(default_factory=dict)


class ToolRegistry:
    """Aggregates the tools of every provider behind one name lookup."""

    def __init__(self, manager: ToolProviderConnectionManager):
        self.manager = manager
        self._tool_providers: dict[str, str] = {}

    async def list_tools(self) -> list[ToolDescriptor]:
        """List the live tools of every reachable provider.

        Unreachable providers are skipped. The name -> provider map is
        rebuilt from the result; on a name collision the later provider wins.
        """
        tools: list[ToolDescriptor] = []
        tool_providers: dict[str, str] = {}

        for provider_id in self.manager.provider_ids:
            try:
                connection = await self.manager.connection(provider_id)
                provider_tools = await connection.list_tools()
            except Exception as e:
                logger.warning("Skipping tool provider", provider=provider_id, error=str(e))
                continue

            for tool in provider_tools:
                previous = tool_providers.get(tool.name)
                if previous is not None:
                    logger.warning(
                        "Tool name collision",
                        tool_name=tool.name,
                        previous_provider=previous,
                        provider=provider_id,
                    )
                    tools = [t for t in tools if t.name != tool.name]
                tool_providers[tool.name] = provider_id
                tools.append(tool)

        self._tool_providers = tool_providers
        logger.info("Tools listed", count=len(tools))
        return tools

    def has_tool(self, name: str) -> bool:
        """Check the last listing for a tool name."""
        return name in self._tool_providers

    async def invoke(self, name: str, arguments: dict[str, Any]) -> str:
        """Invoke a tool and return its result as JSON text.

        Every failure is returned as an error payload instead of raised.
        """
        if not isinstance(arguments, dict):
            return error_payload(f"Invalid arguments for tool '{name}': expected a JSON object")

        provider_id = self._tool_providers.get(name)
        if provider_id is None:
            await self.list_tools()
            provider_id = self._tool_providers.get(name)
        if provider_id is None:
            logger.warning("Unknown tool requested", tool_name=name)
            return error_payload(f"Tool '{name}' not found")

        try:
            connection = await self.manager.connection(provider_id)
            result = await connection.call_tool(name, arguments)
        except AgentError as e:
            logger.error("Tool execution error", tool_name=name, provider=provider_id, error=str(e))
            return error_payload(str(e))
        except Exception as e:
            logger.exception("Unexpected tool execution error", tool_name=name, provider=provider_id)
            return error_payload(f"Tool execution failed: {e}")

        logger.info("Tool executed", tool_name=name, provider=provider_id)
        return json.dumps(result, ensure_ascii=False)

    def statistics(self) -> RegistryStatistics:
        """Counts from the last listing plus the current connectivity snapshot."""
        by_provider: dict[str, int] = {}
        for provider_id in self._tool_providers.values():
            by_provider[provider_id] = by_provider.get(provider_id, 0) + 1

        return RegistryStatistics(
            total_tools=len(self._tool_providers),
            tools_by_provider=by_provider,
            tool_names=sorted(self._tool_providers),
            connectivity=self.manager.connectivity(),
        )
