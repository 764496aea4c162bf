"""
Tests for the conversation engine round loop.
"""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from ai_chat_agent.agent.core import ConversationEngine, EngineState, UsageAccumulator
from ai_chat_agent.errors import MalformedToolCallError, RoundLimitExceeded, TransportError
from ai_chat_agent.llm.base import ChatTurn, ProviderReply, ToolCall, ToolDescriptor, Usage


def tool_reply(name="get_weather", arguments=None, usage=Usage(10, 2, 12)):
    return ProviderReply(
        content="",
        tool_call=ToolCall(name=name, arguments={"city": "Moscow"} if arguments is None else arguments, id="call-1"),
        usage=usage,
    )


def make_registry(result='{"temp": 20}'):
    registry = MagicMock()
    registry.list_tools = AsyncMock(return_value=[
        ToolDescriptor(name="get_weather", description="Weather", input_schema={"type": "object"}, provider="weather"),
    ])
    registry.invoke = AsyncMock(return_value=result)
    return registry


def test_usage_accumulator_sums_rounds():
    """Test that the accumulator sums usage field by field."""
    accumulator = UsageAccumulator()
    accumulator.add(Usage(5, 2, 7))
    accumulator.add(Usage(3, 1, 4))

    assert accumulator.total == Usage(8, 3, 11)
    assert accumulator.rounds == 2


@pytest.mark.asyncio
async def test_engine_no_tool_path(scripted_adapter):
    """Test a final answer on the first round with no tools configured."""
    adapter = scripted_adapter([ProviderReply(content="hi", usage=Usage(5, 2, 7))])
    engine = ConversationEngine(adapter)

    result = await engine.run("You are helpful.", [ChatTurn(role="user", content="hello")], 0.7, 100)

    assert result.state == EngineState.FINAL
    assert result.answer == "hi"
    assert result.usage == Usage(5, 2, 7)
    assert result.rounds == 1
    assert result.error is None

    request = adapter.requests[0]
    assert request["tools"] == []
    assert [t.role for t in request["turns"]] == ["system", "user"]
    assert request["turns"][0].content == "You are helpful."
    assert request["temperature"] == 0.7
    assert request["max_tokens"] == 100


@pytest.mark.asyncio
async def test_engine_tool_round_then_final(scripted_adapter):
    """Test one tool round followed by a final answer."""
    adapter = scripted_adapter([
        tool_reply(),
        ProviderReply(content="It is 20 degrees.", usage=Usage(20, 5, 25)),
    ])
    registry = make_registry()
    engine = ConversationEngine(adapter, registry)

    result = await engine.run("sys", [ChatTurn(role="user", content="weather?")], 0.7, 100)

    assert result.state == EngineState.FINAL
    assert result.answer == "It is 20 degrees."
    assert result.usage == Usage(30, 7, 37)
    assert result.rounds == 2
    registry.list_tools.assert_awaited_once()
    registry.invoke.assert_awaited_once_with("get_weather", {"city": "Moscow"})

    second_turns = adapter.requests[1]["turns"]
    assert [t.role for t in second_turns] == ["system", "user", "assistant", "tool"]
    assert second_turns[2].tool_call.name == "get_weather"
    assert second_turns[3].content == '{"temp": 20}'
    assert second_turns[3].name == "get_weather"
    assert adapter.requests[1]["tools"][0].name == "get_weather"


@pytest.mark.asyncio
async def test_engine_round_cap_aborts_with_summed_usage(scripted_adapter):
    """Test that a model that always calls tools is stopped after 10 rounds."""
    adapter = scripted_adapter([tool_reply(usage=Usage(10, 2, 12))])
    registry = make_registry()
    engine = ConversationEngine(adapter, registry)

    result = await engine.run("sys", [ChatTurn(role="user", content="loop")], 0.7, 100)

    assert result.state == EngineState.ABORTED
    assert isinstance(result.error, RoundLimitExceeded)
    assert result.rounds == 10
    assert result.usage == Usage(100, 20, 120)
    assert len(adapter.requests) == 10
    assert "Maximum number of tool rounds (10) reached" in result.answer


@pytest.mark.asyncio
async def test_engine_tool_error_is_returned_to_model(scripted_adapter):
    """Test that a failing tool becomes data for the next round."""
    error = json.dumps({"error": "Tool 'get_weather' not found", "status": "error"})
    adapter = scripted_adapter([
        tool_reply(),
        ProviderReply(content="Sorry, no weather.", usage=Usage(1, 1, 2)),
    ])
    engine = ConversationEngine(adapter, make_registry(result=error))

    result = await engine.run("sys", [ChatTurn(role="user", content="weather?")], 0.7, 100)

    assert result.state == EngineState.FINAL
    assert result.answer == "Sorry, no weather."
    tool_turn = adapter.requests[1]["turns"][-1]
    assert tool_turn.role == "tool"
    assert json.loads(tool_turn.content)["status"] == "error"


@pytest.mark.asyncio
@pytest.mark.parametrize("name,arguments", [("", {"city": "Moscow"}), ("get_weather", None)])
async def test_engine_malformed_tool_call_aborts(name, arguments, scripted_adapter):
    """Test that a tool call without a name or arguments aborts the loop."""
    reply = ProviderReply(content="", tool_call=ToolCall(name=name, arguments=arguments), usage=Usage(4, 1, 5))
    adapter = scripted_adapter([reply])
    registry = make_registry()
    engine = ConversationEngine(adapter, registry)

    result = await engine.run("sys", [ChatTurn(role="user", content="x")], 0.7, 100)

    assert result.state == EngineState.ABORTED
    assert isinstance(result.error, MalformedToolCallError)
    assert result.usage == Usage(4, 1, 5)
    registry.invoke.assert_not_awaited()


@pytest.mark.asyncio
async def test_engine_transport_error_keeps_prior_usage(scripted_adapter):
    """Test that a transport failure aborts and keeps earlier rounds' usage."""
    adapter = scripted_adapter([
        tool_reply(usage=Usage(10, 2, 12)),
        TransportError("scripted", "API returned error 500"),
    ])
    engine = ConversationEngine(adapter, make_registry())

    result = await engine.run("sys", [ChatTurn(role="user", content="x")], 0.7, 100)

    assert result.state == EngineState.ABORTED
    assert isinstance(result.error, TransportError)
    assert result.usage == Usage(10, 2, 12)
    assert result.rounds == 1
    assert result.answer.startswith("Request failed:")


@pytest.mark.asyncio
async def test_engine_unexpected_adapter_failure_becomes_transport_error(scripted_adapter):
    """Test that unexpected adapter exceptions are reported as transport errors."""
    adapter = scripted_adapter([KeyError("choices")])
    engine = ConversationEngine(adapter)

    result = await engine.run("sys", [], 0.7, 100)

    assert result.state == EngineState.ABORTED
    assert isinstance(result.error, TransportError)
    assert result.usage == Usage()


@pytest.mark.asyncio
async def test_engine_tool_call_without_registry(scripted_adapter):
    """Test that a tool call with no registry is answered with an error payload."""
    adapter = scripted_adapter([tool_reply(), ProviderReply(content="done")])
    engine = ConversationEngine(adapter)

    result = await engine.run("sys", [ChatTurn(role="user", content="x")], 0.7, 100)

    assert result.state == EngineState.FINAL
    tool_turn = adapter.requests[1]["turns"][-1]
    assert json.loads(tool_turn.content) == {"error": "Tool 'get_weather' not found", "status": "error"}


def test_compute_cost_rounds_half_up(scripted_adapter):
    """Test cost rounding to cents."""
    adapter = scripted_adapter([ProviderReply(content="")])

    assert adapter.compute_cost(7) == Decimal("0.01")
    assert adapter.compute_cost(0) == Decimal("0.00")
    assert adapter.compute_cost(1000) == Decimal("1.50")
    # 3 tokens * 1500 / 1M = 0.0045 -> 0.00
    assert adapter.compute_cost(3) == Decimal("0.00")
    # 333_333 tokens -> 499.9995 -> 500.00
    assert adapter.compute_cost(333_333) == Decimal("500.00")
