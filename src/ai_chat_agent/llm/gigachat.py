"""
GigaChat (Sber) LLM provider.

Authentication is OAuth client-credentials: the base64 auth key is exchanged
for an access token that is cached until its ``expires_at`` timestamp.
Tools are passed as ``functions``; the model asks for one with
``finish_reason == "function_call"``.
"""

import asyncio
import json
import time
import uuid
from decimal import Decimal
from typing import Any

import httpx
import structlog

from ..errors import TransportError
from .base import ChatTurn, HttpProviderAdapter, ProviderReply, ToolCall, ToolDescriptor, Usage

logger = structlog.get_logger()

BASE_URL = "https://gigachat.devices.sberbank.ru/api/v1/chat/completions"
AUTH_URL = "https://ngw.devices.sberbank.ru:9443/api/v2/oauth"

# Refresh the token slightly before it actually expires
TOKEN_EXPIRY_LEEWAY_MS = 60_000


class GigaChatAdapter(HttpProviderAdapter):
    """GigaChat chat-completions provider."""

    # 1500 RUB per 1M tokens
    price_per_million = Decimal("1500")

    def __init__(
        self,
        auth_key: str,
        model: str = "GigaChat",
        scope: str = "GIGACHAT_API_PERS",
        http_client: httpx.AsyncClient | None = None,
        owns_client: bool | None = None,
        base_url: str = BASE_URL,
        auth_url: str = AUTH_URL,
    ):
        super().__init__(model, http_client, owns_client)
        self.auth_key = auth_key
        self.scope = scope
        self.base_url = base_url
        self.auth_url = auth_url
        self._access_token: str | None = None
        self._token_expires_at: int = 0
        self._token_lock = asyncio.Lock()

    @property
    def provider_name(self) -> str:
        return "gigachat"

    async def _get_access_token(self) -> str:
        """Return a cached access token, fetching a new one when it expired."""
        async with self._token_lock:
            now_ms = int(time.time() * 1000)
            if self._access_token and now_ms < self._token_expires_at - TOKEN_EXPIRY_LEEWAY_MS:
                return self._access_token

            logger.info("Obtaining new access token from GigaChat")
            body = await self._post_json(
                self.auth_url,
                headers={
                    "Authorization": f"Basic {self.auth_key}",
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                    "RqUID": str(uuid.uuid4()),
                },
                data={"scope": self.scope},
            )

            token = body.get("access_token")
            if not token:
                raise TransportError(self.provider_name, "OAuth response has no access_token")

            self._access_token = token
            self._token_expires_at = int(body.get("expires_at", 0))
            logger.info("Successfully obtained access token")
            return token

    def _convert_messages(self, turns: list[ChatTurn]) -> list[dict[str, Any]]:
        """Convert ChatTurns to GigaChat format."""
        converted = []

        for turn in turns:
            if turn.role == "tool":
                converted.append({
                    "role": "function",
                    "content": turn.content,
                    "name": turn.name or (turn.tool_call.name if turn.tool_call else ""),
                })
            elif turn.role == "assistant" and turn.tool_call:
                message: dict[str, Any] = {
                    "role": "assistant",
                    "content": turn.content,
                    "function_call": {
                        "name": turn.tool_call.name,
                        "arguments": turn.tool_call.arguments or {},
                    },
                }
                if turn.tool_call.id:
                    message["functions_state_id"] = turn.tool_call.id
                converted.append(message)
            else:
                converted.append({"role": turn.role, "content": turn.content})

        return converted

    def _convert_tools(self, tools: list[ToolDescriptor]) -> list[dict[str, Any]]:
        """Convert ToolDescriptors to GigaChat functions."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
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
            "model": self.model,
            "messages": self._convert_messages(turns),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            request["functions"] = self._convert_tools(tools)
            request["function_call"] = "auto"
        return request

    async def send(self, request: dict[str, Any]) -> dict[str, Any]:
        token = await self._get_access_token()
        logger.debug("Sending request to GigaChat API", url=self.base_url)
        return await self._post_json(
            self.base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            },
            payload=request,
        )

    def parse_reply(self, raw: dict[str, Any]) -> ProviderReply:
        try:
            usage_data = raw.get("usage") or {}
            usage = Usage(
                prompt_tokens=int(usage_data.get("prompt_tokens", 0)),
                completion_tokens=int(usage_data.get("completion_tokens", 0)),
                total_tokens=int(usage_data.get("total_tokens", 0)),
            )
            choices = raw["choices"]
            if not choices:
                raise TransportError(self.provider_name, "API returned an empty choices list")
            choice = choices[0]
            message = choice.get("message") or {}
            finish_reason = choice.get("finish_reason")
            content = message.get("content") or ""
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise TransportError(self.provider_name, f"malformed response: {e}") from e

        tool_call = None
        if finish_reason == "function_call":
            function_call = message.get("function_call") or {}
            tool_call = ToolCall(
                name=function_call.get("name") or "",
                arguments=_as_arguments(function_call.get("arguments")),
                id=message.get("functions_state_id") or "",
            )

        return ProviderReply(
            content=content,
            tool_call=tool_call,
            usage=usage,
            finish_reason=finish_reason,
            raw_response=raw,
        )


def _as_arguments(value: Any) -> dict[str, Any] | None:
    """Normalize function arguments to a dict, or None if there is no object."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    return value if isinstance(value, dict) else None
