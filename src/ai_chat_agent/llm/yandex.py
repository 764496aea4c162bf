"""
YandexGPT (Yandex Cloud Foundation Models) LLM provider.
"""

from decimal import Decimal
from typing import Any

import httpx
import structlog

from ..errors import TransportError
from .base import ChatTurn, HttpProviderAdapter, ProviderReply, ToolCall, ToolDescriptor, Usage

logger = structlog.get_logger()

COMPLETION_URL = "https://llm.api.cloud.yandex.net/foundationModels/v1/completion"

TOOL_CALLS_STATUS = "ALTERNATIVE_STATUS_TOOL_CALLS"


class YandexGPTAdapter(HttpProviderAdapter):
    """YandexGPT completion provider."""

    # 1.20 RUB per 1000 tokens
    price_per_million = Decimal("1200")

    def __init__(
        self,
        api_key: str,
        folder_id: str,
        model: str = "yandexgpt/latest",
        http_client: httpx.AsyncClient | None = None,
        owns_client: bool | None = None,
        base_url: str = COMPLETION_URL,
    ):
        super().__init__(model, http_client, owns_client)
        self.api_key = api_key
        self.folder_id = folder_id
        self.base_url = base_url

    @property
    def provider_name(self) -> str:
        return "yandex"

    @property
    def model_uri(self) -> str:
        return f"gpt://{self.folder_id}/{self.model}"

    def _convert_messages(self, turns: list[ChatTurn]) -> list[dict[str, Any]]:
        """Convert ChatTurns to YandexGPT format."""
        converted = []

        for turn in turns:
            if turn.role == "tool":
                name = turn.name or (turn.tool_call.name if turn.tool_call else "")
                converted.append({
                    "role": "user",
                    "toolResultList": {
                        "toolResults": [
                            {"functionResult": {"name": name, "content": turn.content}}
                        ]
                    },
                })
            elif turn.role == "assistant" and turn.tool_call:
                converted.append({
                    "role": "assistant",
                    "toolCallList": {
                        "toolCalls": [
                            {
                                "functionCall": {
                                    "name": turn.tool_call.name,
                                    "arguments": turn.tool_call.arguments or {},
                                }
                            }
                        ]
                    },
                })
            else:
                converted.append({"role": turn.role, "text": turn.content})

        return converted

    def _convert_tools(self, tools: list[ToolDescriptor]) -> list[dict[str, Any]]:
        """Convert ToolDescriptors to YandexGPT function tools."""
        return [
            {
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                }
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
        request: dict[str, Any] = {
            "modelUri": self.model_uri,
            "completionOptions": {
                "stream": False,
                "temperature": temperature,
                "maxTokens": str(max_tokens),
            },
            "messages": self._convert_messages(turns),
        }
        if tools:
            request["tools"] = self._convert_tools(tools)
        return request

    async def send(self, request: dict[str, Any]) -> dict[str, Any]:
        logger.debug("Sending request to YandexGPT API", url=self.base_url)
        return await self._post_json(
            self.base_url,
            headers={
                "Authorization": f"Api-Key {self.api_key}",
                "x-folder-id": self.folder_id,
                "Accept": "application/json",
            },
            payload=request,
        )

    def parse_reply(self, raw: dict[str, Any]) -> ProviderReply:
        try:
            result = raw["result"]
            usage_data = result.get("usage") or {}
            # Yandex serializes int64 counters as strings
            usage = Usage(
                prompt_tokens=int(usage_data.get("inputTextTokens", 0)),
                completion_tokens=int(usage_data.get("completionTokens", 0)),
                total_tokens=int(usage_data.get("totalTokens", 0)),
            )
            alternatives = result["alternatives"]
            if not alternatives:
                raise TransportError(self.provider_name, "API returned no alternatives")
            alternative = alternatives[0]
            message = alternative.get("message") or {}
            status = alternative.get("status")
            tool_calls = (message.get("toolCallList") or {}).get("toolCalls") or []
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise TransportError(self.provider_name, f"malformed response: {e}") from e

        tool_call = None
        if tool_calls or status == TOOL_CALLS_STATUS:
            function_call = (tool_calls[0].get("functionCall") if tool_calls else None) or {}
            arguments = function_call.get("arguments")
            tool_call = ToolCall(
                name=function_call.get("name") or "",
                arguments=arguments if isinstance(arguments, dict) else None,
            )

        return ProviderReply(
            content=message.get("text") or "",
            tool_call=tool_call,
            usage=usage,
            finish_reason=status,
            raw_response=raw,
        )
