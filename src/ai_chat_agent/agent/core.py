"""
Core conversation engine: the request/tool-call round loop.

One invocation loops until the model answers without a tool call (FINAL)
or the invocation aborts (ABORTED):
1. The outgoing list is the system turn plus the full history
2. Each round sends the list and the live tool descriptors to the provider
3. A requested tool is invoked through the registry and its JSON result
   (or JSON error payload) is appended for the next round
4. Token usage of every round is summed into one total
"""

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import structlog

from ..errors import AgentError, MalformedToolCallError, RoundLimitExceeded, TransportError
from ..llm.base import ChatTurn, ProviderAdapter, ToolDescriptor, Usage
from ..tools.base import error_payload
from ..tools.registry import ToolRegistry

logger = structlog.get_logger()

DEFAULT_MAX_ROUNDS = 10


class EngineState(str, Enum):
    FINAL = "final"
    ABORTED = "aborted"


@dataclass
class EngineResult:
    """Outcome of one engine invocation.

    An aborted result still carries a user-visible ``answer`` describing the
    error, plus the usage accumulated before the abort.
    """

    answer: str
    usage: Usage
    rounds: int
    state: EngineState = EngineState.FINAL
    error: AgentError | None = None

    @property
    def ok(self) -> bool:
        return self.state == EngineState.FINAL


class UsageAccumulator:
    """Sums token usage over the rounds of one invocation."""

    def __init__(self) -> None:
        self.total = Usage()
        self.rounds = 0

    def add(self, usage: Usage) -> None:
        self.total = self.total + usage
        self.rounds += 1


def error_answer(error: Exception) -> str:
    return f"Request failed: {error}"


class ConversationEngine:
    """Provider-agnostic round loop."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        tool_registry: ToolRegistry | None = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
    ):
        self.adapter = adapter
        self.tool_registry = tool_registry
        self.max_rounds = max_rounds

    async def _list_tools(self) -> list[ToolDescriptor]:
        if self.tool_registry is None:
            return []
        return await self.tool_registry.list_tools()

    def _abort(self, error: AgentError, accumulator: UsageAccumulator) -> EngineResult:
        logger.warning(
            "Engine invocation aborted",
            provider=self.adapter.provider_name,
            error=str(error),
            rounds=accumulator.rounds,
        )
        return EngineResult(
            answer=error_answer(error),
            usage=accumulator.total,
            rounds=accumulator.rounds,
            state=EngineState.ABORTED,
            error=error,
        )

    async def run(
        self,
        system_prompt: str,
        history: Sequence[ChatTurn],
        temperature: float,
        max_tokens: int,
    ) -> EngineResult:
        """Run the round loop until a final answer or an abort."""
        turns = [ChatTurn(role="system", content=system_prompt), *history]
        tools = await self._list_tools()
        accumulator = UsageAccumulator()

        for round_number in range(1, self.max_rounds + 1):
            try:
                reply = await self.adapter.complete(turns, tools, temperature, max_tokens)
            except TransportError as e:
                return self._abort(e, accumulator)
            except Exception as e:
                logger.exception("Unexpected provider failure", provider=self.adapter.provider_name)
                return self._abort(TransportError(self.adapter.provider_name, str(e)), accumulator)

            accumulator.add(reply.usage)

            if reply.is_final:
                logger.info(
                    "Engine invocation finished",
                    provider=self.adapter.provider_name,
                    rounds=accumulator.rounds,
                    total_tokens=accumulator.total.total_tokens,
                )
                return EngineResult(
                    answer=reply.content,
                    usage=accumulator.total,
                    rounds=accumulator.rounds,
                )

            tool_call = reply.tool_call
            if not tool_call.name or tool_call.arguments is None:
                return self._abort(
                    MalformedToolCallError(
                        tool_call.name,
                        f"Model requested a tool call without a name or arguments: {tool_call.name!r}",
                    ),
                    accumulator,
                )

            logger.info(
                "Executing tool",
                tool=tool_call.name,
                arguments=tool_call.arguments,
                round=round_number,
            )
            if self.tool_registry is None:
                result = error_payload(f"Tool '{tool_call.name}' not found")
            else:
                result = await self.tool_registry.invoke(tool_call.name, tool_call.arguments)

            turns.append(ChatTurn(role="assistant", content=reply.content, tool_call=tool_call))
            turns.append(ChatTurn(role="tool", content=result, tool_call=tool_call, name=tool_call.name))

        return self._abort(RoundLimitExceeded(self.max_rounds), accumulator)
