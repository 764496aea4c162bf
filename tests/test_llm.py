"""
Tests for LLM provider adapters.
"""

import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from ai_chat_agent.config import Settings
from ai_chat_agent.errors import TransportError
from ai_chat_agent.llm.anthropic import AnthropicAdapter
from ai_chat_agent.llm.base import ChatTurn, ToolCall, ToolDescriptor, Usage
from ai_chat_agent.llm.factory import create_adapter
from ai_chat_agent.llm.gigachat import AUTH_URL, BASE_URL, GigaChatAdapter
from ai_chat_agent.llm.openai import OpenAIAdapter
from ai_chat_agent.llm.yandex import YandexGPTAdapter

WEATHER_TOOL = ToolDescriptor(
    name="get_weather",
    description="Current weather",
    input_schema={"type": "object", "properties": {"city": {"type": "string"}}},
    provider="weather",
)

FAR_FUTURE_MS = 32503680000000


def gigachat_transport(completions, requests):
    """MockTransport serving an OAuth token and queued completion bodies."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if str(request.url) == AUTH_URL:
            return httpx.Response(200, json={"access_token": "token-1", "expires_at": FAR_FUTURE_MS})
        status, body = completions.pop(0)
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler)


def gigachat_completion(message, finish_reason="stop", usage=(5, 2, 7)):
    return {
        "choices": [{"message": message, "finish_reason": finish_reason, "index": 0}],
        "usage": {"prompt_tokens": usage[0], "completion_tokens": usage[1], "total_tokens": usage[2]},
    }


@pytest.mark.asyncio
async def test_gigachat_final_answer():
    """Test a plain GigaChat answer and the OAuth exchange."""
    requests = []
    completions = [(200, gigachat_completion({"role": "assistant", "content": "hi"}))]
    client = httpx.AsyncClient(transport=gigachat_transport(completions, requests))
    adapter = GigaChatAdapter(auth_key="YXV0aA==", http_client=client)

    reply = await adapter.complete([ChatTurn(role="user", content="hello")], [], 0.7, 100)

    assert reply.is_final
    assert reply.content == "hi"
    assert reply.usage == Usage(5, 2, 7)

    auth_request, chat_request = requests
    assert auth_request.headers["Authorization"] == "Basic YXV0aA=="
    assert "RqUID" in auth_request.headers
    assert auth_request.content == b"scope=GIGACHAT_API_PERS"
    assert str(chat_request.url) == BASE_URL
    assert chat_request.headers["Authorization"] == "Bearer token-1"
    body = json.loads(chat_request.content)
    assert body["messages"] == [{"role": "user", "content": "hello"}]
    assert "functions" not in body


@pytest.mark.asyncio
async def test_gigachat_token_is_cached():
    """Test that the access token is reused until it expires."""
    requests = []
    completions = [
        (200, gigachat_completion({"role": "assistant", "content": "one"})),
        (200, gigachat_completion({"role": "assistant", "content": "two"})),
    ]
    client = httpx.AsyncClient(transport=gigachat_transport(completions, requests))
    adapter = GigaChatAdapter(auth_key="key", http_client=client)

    await adapter.complete([ChatTurn(role="user", content="a")], [], 0.7, 100)
    await adapter.complete([ChatTurn(role="user", content="b")], [], 0.7, 100)

    assert [str(r.url) for r in requests].count(AUTH_URL) == 1


@pytest.mark.asyncio
async def test_gigachat_function_call():
    """Test that finish_reason function_call yields a tool call."""
    requests = []
    message = {
        "role": "assistant",
        "content": "",
        "function_call": {"name": "get_weather", "arguments": {"city": "Moscow"}},
        "functions_state_id": "state-1",
    }
    completions = [(200, gigachat_completion(message, finish_reason="function_call"))]
    client = httpx.AsyncClient(transport=gigachat_transport(completions, requests))
    adapter = GigaChatAdapter(auth_key="key", http_client=client)

    reply = await adapter.complete([ChatTurn(role="user", content="weather?")], [WEATHER_TOOL], 0.7, 100)

    assert not reply.is_final
    assert reply.tool_call == ToolCall(name="get_weather", arguments={"city": "Moscow"}, id="state-1")
    body = json.loads(requests[-1].content)
    assert body["function_call"] == "auto"
    assert body["functions"][0]["name"] == "get_weather"
    assert body["functions"][0]["parameters"] == WEATHER_TOOL.input_schema


def test_gigachat_tool_turns_conversion():
    """Test how tool-request and tool-result turns are sent back."""
    adapter = GigaChatAdapter(auth_key="key", http_client=httpx.AsyncClient())
    call = ToolCall(name="get_weather", arguments={"city": "Moscow"}, id="state-1")

    request = adapter.build_request(
        [
            ChatTurn(role="system", content="sys"),
            ChatTurn(role="assistant", content="", tool_call=call),
            ChatTurn(role="tool", content='{"temp": 20}', tool_call=call, name="get_weather"),
        ],
        [],
        0.5,
        50,
    )

    assert request["messages"][1]["function_call"] == {"name": "get_weather", "arguments": {"city": "Moscow"}}
    assert request["messages"][1]["functions_state_id"] == "state-1"
    assert request["messages"][2] == {"role": "function", "content": '{"temp": 20}', "name": "get_weather"}
    assert request["temperature"] == 0.5
    assert request["max_tokens"] == 50


def test_gigachat_string_arguments_are_parsed():
    """Test that JSON-string arguments are decoded and junk becomes None."""
    adapter = GigaChatAdapter(auth_key="key", http_client=httpx.AsyncClient())

    parsed = adapter.parse_reply(gigachat_completion(
        {"role": "assistant", "content": "", "function_call": {"name": "t", "arguments": '{"a": 1}'}},
        finish_reason="function_call",
    ))
    junk = adapter.parse_reply(gigachat_completion(
        {"role": "assistant", "content": "", "function_call": {"name": "t", "arguments": "not json"}},
        finish_reason="function_call",
    ))

    assert parsed.tool_call.arguments == {"a": 1}
    assert junk.tool_call.arguments is None


@pytest.mark.asyncio
async def test_gigachat_error_status_raises_transport_error():
    """Test that a non-success status becomes TransportError."""
    requests = []
    completions = [(500, {"message": "internal error"})]
    client = httpx.AsyncClient(transport=gigachat_transport(completions, requests))
    adapter = GigaChatAdapter(auth_key="key", http_client=client)

    with pytest.raises(TransportError) as exc_info:
        await adapter.complete([ChatTurn(role="user", content="x")], [], 0.7, 100)

    assert exc_info.value.status_code == 500
    assert exc_info.value.provider == "gigachat"


@pytest.mark.parametrize("body", [{}, {"choices": []}, {"choices": "nope"}])
def test_gigachat_malformed_body_raises_transport_error(body):
    """Test that malformed bodies become TransportError."""
    adapter = GigaChatAdapter(auth_key="key", http_client=httpx.AsyncClient())

    with pytest.raises(TransportError):
        adapter.parse_reply(body)


@pytest.mark.asyncio
async def test_network_failure_raises_transport_error():
    """Test that httpx errors become TransportError."""

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    adapter = YandexGPTAdapter(api_key="key", folder_id="folder", http_client=client)

    with pytest.raises(TransportError, match="connection refused"):
        await adapter.complete([ChatTurn(role="user", content="x")], [], 0.7, 100)


def yandex_completion(message, status="ALTERNATIVE_STATUS_FINAL"):
    return {
        "result": {
            "alternatives": [{"message": message, "status": status}],
            "usage": {"inputTextTokens": "5", "completionTokens": "2", "totalTokens": "7"},
            "modelVersion": "23.10.2024",
        }
    }


@pytest.mark.asyncio
async def test_yandex_final_answer():
    """Test a plain YandexGPT answer and the request shape."""
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=yandex_completion({"role": "assistant", "text": "hi"}))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    adapter = YandexGPTAdapter(api_key="secret", folder_id="b1gfolder", http_client=client)

    reply = await adapter.complete(
        [ChatTurn(role="system", content="sys"), ChatTurn(role="user", content="hello")], [], 0.3, 100
    )

    assert reply.content == "hi"
    assert reply.usage == Usage(5, 2, 7)
    assert reply.is_final

    request = requests[0]
    assert request.headers["Authorization"] == "Api-Key secret"
    assert request.headers["x-folder-id"] == "b1gfolder"
    body = json.loads(request.content)
    assert body["modelUri"] == "gpt://b1gfolder/yandexgpt/latest"
    assert body["completionOptions"] == {"stream": False, "temperature": 0.3, "maxTokens": "100"}
    assert body["messages"] == [{"role": "system", "text": "sys"}, {"role": "user", "text": "hello"}]
    assert "tools" not in body


def test_yandex_tool_call_and_conversion():
    """Test YandexGPT tool calls and tool result turns."""
    adapter = YandexGPTAdapter(api_key="key", folder_id="folder", http_client=httpx.AsyncClient())

    reply = adapter.parse_reply(yandex_completion(
        {
            "role": "assistant",
            "toolCallList": {
                "toolCalls": [{"functionCall": {"name": "get_weather", "arguments": {"city": "Moscow"}}}]
            },
        },
        status="ALTERNATIVE_STATUS_TOOL_CALLS",
    ))

    assert reply.tool_call == ToolCall(name="get_weather", arguments={"city": "Moscow"})

    request = adapter.build_request(
        [
            ChatTurn(role="assistant", content="", tool_call=reply.tool_call),
            ChatTurn(role="tool", content='{"temp": 20}', tool_call=reply.tool_call, name="get_weather"),
        ],
        [WEATHER_TOOL],
        0.7,
        100,
    )

    assert request["tools"] == [{
        "function": {
            "name": "get_weather",
            "description": "Current weather",
            "parameters": WEATHER_TOOL.input_schema,
        }
    }]
    assert request["messages"][0]["toolCallList"]["toolCalls"][0]["functionCall"]["name"] == "get_weather"
    assert request["messages"][1] == {
        "role": "user",
        "toolResultList": {
            "toolResults": [{"functionResult": {"name": "get_weather", "content": '{"temp": 20}'}}]
        },
    }


def test_yandex_tool_status_without_calls_is_malformed_call():
    """Test that a tool-call status with no call yields a nameless tool call."""
    adapter = YandexGPTAdapter(api_key="key", folder_id="folder", http_client=httpx.AsyncClient())

    reply = adapter.parse_reply(yandex_completion({"role": "assistant"}, status="ALTERNATIVE_STATUS_TOOL_CALLS"))

    assert reply.tool_call is not None
    assert reply.tool_call.name == ""


def test_provider_costs():
    """Test per-provider pricing and rounding."""
    gigachat = GigaChatAdapter(auth_key="key", http_client=httpx.AsyncClient())
    yandex = YandexGPTAdapter(api_key="key", folder_id="folder", http_client=httpx.AsyncClient())

    assert gigachat.compute_cost(7) == Decimal("0.01")
    assert gigachat.compute_cost(1_000_000) == Decimal("1500.00")
    assert yandex.compute_cost(1000) == Decimal("1.20")
    assert yandex.compute_cost(4) == Decimal("0.00")


def test_openai_parse_reply_takes_first_tool_call():
    """Test OpenAI reply parsing."""
    adapter = OpenAIAdapter(api_key="sk-test")
    raw = SimpleNamespace(
        choices=[SimpleNamespace(
            finish_reason="tool_calls",
            message=SimpleNamespace(
                content=None,
                tool_calls=[
                    SimpleNamespace(id="call_1", function=SimpleNamespace(name="get_weather", arguments='{"city": "Moscow"}')),
                    SimpleNamespace(id="call_2", function=SimpleNamespace(name="other", arguments="{}")),
                ],
            ),
        )],
        usage=SimpleNamespace(prompt_tokens=9, completion_tokens=3, total_tokens=12),
    )

    reply = adapter.parse_reply(raw)

    assert reply.tool_call == ToolCall(name="get_weather", arguments={"city": "Moscow"}, id="call_1")
    assert reply.usage == Usage(9, 3, 12)
    assert reply.content == ""


def test_openai_build_request_tool_turns():
    """Test OpenAI conversion of tool-request and tool-result turns."""
    adapter = OpenAIAdapter(api_key="sk-test")
    call = ToolCall(name="get_weather", arguments={"city": "Moscow"}, id="call_1")

    request = adapter.build_request(
        [
            ChatTurn(role="assistant", content="", tool_call=call),
            ChatTurn(role="tool", content='{"temp": 20}', tool_call=call, name="get_weather"),
        ],
        [WEATHER_TOOL],
        0.7,
        100,
    )

    assert request["messages"][0]["tool_calls"][0]["function"]["arguments"] == '{"city": "Moscow"}'
    assert request["messages"][1] == {"role": "tool", "tool_call_id": "call_1", "content": '{"temp": 20}'}
    assert request["tools"][0]["function"]["name"] == "get_weather"
    assert request["parallel_tool_calls"] is False


def test_anthropic_parse_reply_and_system_prompt():
    """Test Anthropic reply parsing and system prompt extraction."""
    adapter = AnthropicAdapter(api_key="sk-ant-test")
    raw = SimpleNamespace(
        content=[
            SimpleNamespace(type="text", text="Let me check."),
            SimpleNamespace(type="tool_use", id="toolu_1", name="get_weather", input={"city": "Moscow"}),
        ],
        usage=SimpleNamespace(input_tokens=11, output_tokens=4),
        stop_reason="tool_use",
    )

    reply = adapter.parse_reply(raw)
    request = adapter.build_request(
        [ChatTurn(role="system", content="sys"), ChatTurn(role="user", content="hi")], [], 0.7, 100
    )

    assert reply.content == "Let me check."
    assert reply.tool_call == ToolCall(name="get_weather", arguments={"city": "Moscow"}, id="toolu_1")
    assert reply.usage == Usage(11, 4, 15)
    assert request["system"] == "sys"
    assert request["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("provider", ["gigachat", "yandex"])
async def test_factory_adapter_closes_its_http_client(provider):
    """Test that adapters built by the factory own and close their HTTP client."""
    settings = Settings(
        _env_file=None,
        gigachat_auth_key="key",
        yandex_api_key="key",
        yandex_folder_id="folder",
    )
    adapter = create_adapter(provider, settings)

    await adapter.aclose()

    assert adapter.http_client.is_closed


@pytest.mark.asyncio
async def test_injected_http_client_is_left_open():
    """Test that a caller-supplied client is not closed by the adapter."""
    client = httpx.AsyncClient()
    adapter = YandexGPTAdapter(api_key="key", folder_id="folder", http_client=client)

    await adapter.aclose()

    assert not client.is_closed
    await client.aclose()
