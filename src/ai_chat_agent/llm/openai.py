"""
OpenAI GPT LLM provider (also works with OpenRouter and compatible APIs).
"""

import json
from decimal import Decimal
from typing import Any

import openai
import structlog

from ..errors import TransportError
from .base import ChatTurn, ProviderAdapter, ProviderReply, ToolCall, ToolDescriptor, Usage

logger = structlog.get_logger()


class OpenAIAdapter(ProviderAdapter):
    """OpenAI chat-completions provider."""

    # USD per 1M tokens, blended input/output estimate
    price_per_million = Decimal("0.60")

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        client: openai.AsyncOpenAI | None = None,
    ):
        super().__init__(model)
        self.client = client or openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_messages(self, turns: list[ChatTurn]) -> list[dict[str, Any]]:
        """Convert ChatTurns to OpenAI format."""
        converted = []

        for turn in turns:
            if turn.role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": turn.tool_call.id if turn.tool_call else "",
                    "content": turn.content,
                })
            elif turn.role == "assistant" and turn.tool_call:
                converted.append({
                    "role": "assistant",
                    "content": turn.content or None,
                    "tool_calls": [
                        {
                            "id": turn.tool_call.id,
                            "type": "function",
                            "function": {
                                "name": turn.tool_call.name,
                                "arguments": json.dumps(turn.tool_call.arguments or {}),
                            },
                        }
                    ],
                })
            else:
                converted.append({
                    "role": turn.role,
                    "content": turn.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDescriptor]) -> list[dict[str, Any]]:
        """Convert ToolDescriptors to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
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
        if tools:
            kwargs["tools"] = self._convert_tools(tools)
            # One tool call per round
            kwargs["parallel_tool_calls"] = False
        return kwargs

    async def send(self, request: dict[str, Any]) -> Any:
        try:
            return await self.client.chat.completions.create(**request)
        except openai.APIError as e:
            logger.error("OpenAI API error", error=str(e))
            raise TransportError(
                self.provider_name,
                str(e),
                status_code=getattr(e, "status_code", None),
            ) from e

    def parse_reply(self, raw: Any) -> ProviderReply:
        if not raw.choices:
            raise TransportError(self.provider_name, "API returned an empty choices list")

        choice = raw.choices[0]
        message = choice.message

        tool_call = None
        if message.tool_calls:
            tc = message.tool_calls[0]
            try:
                arguments = json.loads(tc.function.arguments) if tc.function.arguments else None
            except json.JSONDecodeError:
                arguments = None
            tool_call = ToolCall(
                name=tc.function.name or "",
                arguments=arguments if isinstance(arguments, dict) else None,
                id=tc.id,
            )

        usage = Usage()
        if raw.usage:
            usage = Usage(
                prompt_tokens=raw.usage.prompt_tokens,
                completion_tokens=raw.usage.completion_tokens,
                total_tokens=raw.usage.total_tokens,
            )

        return ProviderReply(
            content=message.content or "",
            tool_call=tool_call,
            usage=usage,
            finish_reason=choice.finish_reason,
            raw_response=raw,
        )

    async def aclose(self) -> None:
        await self.client.close()
