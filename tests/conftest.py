"""
Shared fixtures for the test suite.
"""

from decimal import Decimal
from typing import Any

import pytest

from ai_chat_agent.llm.base import ProviderAdapter


class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays a fixed list of replies (or raises queued errors).

    The last item of the script is repeated once the others are used up.
    """

    price_per_million = Decimal("1500")

    def __init__(self, script: list[Any], name: str = "scripted"):
        super().__init__("scripted")
        self.name = name
        self.script = list(script)
        self.requests: list[dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return self.name

    def build_request(self, turns, tools, temperature, max_tokens):
        return {
            "turns": list(turns),
            "tools": list(tools),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

    async def send(self, request):
        self.requests.append(request)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item

    def parse_reply(self, raw):
        return raw


@pytest.fixture
def scripted_adapter():
    """Factory for ScriptedAdapter instances."""
    return ScriptedAdapter
