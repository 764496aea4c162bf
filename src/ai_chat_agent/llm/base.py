"""
Base classes for LLM provider adapters.

The round loop in ConversationEngine is provider-agnostic. Each adapter only
knows how to turn the shared turn list into its vendor's request, how to send
it, how to read the reply back, and how much the tokens cost.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Literal

import httpx
import structlog

from ..errors import TransportError

logger = structlog.get_logger()

CENT = Decimal("0.01")


@dataclass
class ToolDescriptor:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    input_schema: dict[str, Any]
    provider: str = ""


@dataclass
class ToolCall:
    """A tool call requested by the LLM.

    ``arguments`` is None when the provider sent no argument object.
    """

    name: str
    arguments: dict[str, Any] | None
    id: str = ""


@dataclass
class ChatTurn:
    """A message in the conversation."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str
    tool_call: ToolCall | None = None
    name: str | None = None

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Usage:
    """Token usage of one or more rounds."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass
class ProviderReply:
    """One reply from an LLM: a final answer or exactly one tool call."""

    content: str
    tool_call: ToolCall | None = None
    usage: Usage = field(default_factory=Usage)
    finish_reason: str | None = None
    raw_response: Any = None

    @property
    def is_final(self) -> bool:
        return self.tool_call is None


def round_cost(amount: Decimal) -> Decimal:
    """Round a currency amount to cents, half up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class ProviderAdapter(ABC):
    """Base class for LLM provider adapters."""

    # Price in currency units per one million tokens
    price_per_million: Decimal = Decimal("0")

    def __init__(self, model: str):
        self.model = model

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

    @abstractmethod
    def build_request(
        self,
        turns: list[ChatTurn],
        tools: list[ToolDescriptor],
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        """Convert the outgoing turn list into the vendor request body."""
        pass

    @abstractmethod
    async def send(self, request: dict[str, Any]) -> Any:
        """Send a request built by build_request.

        Must raise TransportError for network failures and non-success statuses.
        """
        pass

    @abstractmethod
    def parse_reply(self, raw: Any) -> ProviderReply:
        """Read a vendor response. Raises TransportError on malformed bodies."""
        pass

    def compute_cost(self, total_tokens: int) -> Decimal:
        """Cost of the given number of tokens, rounded to cents half up."""
        return round_cost(self.price_per_million * total_tokens / Decimal(1_000_000))

    async def complete(
        self,
        turns: list[ChatTurn],
        tools: list[ToolDescriptor],
        temperature: float,
        max_tokens: int,
    ) -> ProviderReply:
        """Run one request/response round."""
        request = self.build_request(turns, tools, temperature, max_tokens)
        raw = await self.send(request)
        return self.parse_reply(raw)

    async def aclose(self) -> None:
        """Release network resources."""
        return None


class HttpProviderAdapter(ProviderAdapter):
    """Adapter for providers spoken to with plain JSON over HTTP."""

    def __init__(
        self,
        model: str,
        http_client: httpx.AsyncClient | None = None,
        owns_client: bool | None = None,
    ):
        super().__init__(model)
        # A client handed in is closed by its creator unless ownership is passed along
        self._owns_client = http_client is None if owns_client is None else owns_client
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(120.0, connect=60.0)
        )

    async def _post_json(
        self,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any] | None = None,
        data: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST and decode a JSON body, mapping every failure to TransportError."""
        try:
            if data is not None:
                response = await self.http_client.post(url, headers=headers, data=data)
            else:
                response = await self.http_client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error("LLM request failed", provider=self.provider_name, error=str(e))
            raise TransportError(self.provider_name, f"request failed: {e}") from e

        if not response.is_success:
            logger.error(
                "LLM API error response",
                provider=self.provider_name,
                status=response.status_code,
                body=response.text[:500],
            )
            raise TransportError(
                self.provider_name,
                f"API returned error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except json.JSONDecodeError as e:
            raise TransportError(self.provider_name, f"response is not valid JSON: {e}") from e
        if not isinstance(body, dict):
            raise TransportError(self.provider_name, "response body is not a JSON object")
        return body

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
