"""
Anthropic Claude LLM provider.
"""

from decimal import Decimal
from typing import Any

import anthropic
import structlog

from ..errors import TransportError
from .base import ChatTurn, ProviderAdapter, ProviderReply, ToolCall, ToolDescriptor, Usage

logger = structlog.get_logger()


class AnthropicAdapter(ProviderAdapter):
    """Anthropic messages-API provider."""

    # USD per 1M tokens, blended input/output estimate
    price_per_million = Decimal("6.00")

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        super().__init__(model)
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(self, turns: list[ChatTurn]) -> list[dict[str, Any]]:
        """Convert ChatTurns to Anthropic format. System turns are sent separately."""
        converted = []

        for turn in turns:
            if turn.role == "system":
                continue

            if turn.role == "tool":
                converted.append({
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": turn.tool_call.id if turn.tool_call else "",
                            "content": turn.content,
                        }
                    ],
                })
            elif turn.role == "assistant" and turn.tool_call:
                content: list[dict[str, Any]] = []
                if turn.content:
                    content.append({"type": "text", "text": turn.content})
                content.append({
                    "type": "tool_use",
                    "id": turn.tool_call.id,
                    "name": turn.tool_call.name,
                    "input": turn.tool_call.arguments or {},
                })
                converted.append({"role": "assistant", "content": content})
            else:
                converted.append({
                    "role": turn.role,
                    "content": turn.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDescriptor]) -> list[dict[str, Any]]:
        """Convert ToolDescriptors to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in tools
        ]

    def build_request(
        self,
        turns: list[ChatTurn],
        tools: list[ToolDescriptor],
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": self._convert_messages(turns),
        }

        system = "\n\n".join(t.content for t in turns if t.role == "system")
        if system:
            kwargs["system"] = system

        if tools:
            kwargs["tools"] = self._convert_tools(tools)
            kwargs["tool_choice"] = {"type": "auto", "disable_parallel_tool_use": True}

        return kwargs

    async def send(self, request: dict[str, Any]) -> Any:
        try:
            return await self.client.messages.create(**request)
        except anthropic.APIError as e:
            logger.error("Anthropic API error", error=str(e))
            raise TransportError(
                self.provider_name,
                str(e),
                status_code=getattr(e, "status_code", None),
            ) from e

    def parse_reply(self, raw: Any) -> ProviderReply:
        content = ""
        tool_call = None

        for block in raw.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use" and tool_call is None:
                tool_call = ToolCall(
                    name=block.name or "",
                    arguments=dict(block.input) if isinstance(block.input, dict) else None,
                    id=block.id,
                )

        input_tokens = raw.usage.input_tokens
        output_tokens = raw.usage.output_tokens

        return ProviderReply(
            content=content,
            tool_call=tool_call,
            usage=Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            finish_reason=raw.stop_reason,
            raw_response=raw,
        )

    async def aclose(self) -> None:
        await self.client.close()
