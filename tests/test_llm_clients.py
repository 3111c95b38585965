import asyncio
import json
import pytest
import httpx
from unittest.mock import AsyncMock, patch

from stepwise.config import StepwiseConfig
from stepwise.llm_client import ChatResponse, Message, SimpleLLMClient, TokenUsage
from stepwise.openrouter_client import OpenRouterClient, OpenRouterError
from stepwise.providers import (
    AWSBedrockClient,
    AzureOpenAIClient,
    OllamaClient,
    create_llm_client,
)


def _completion(content: str = "hello") -> dict:
    return {
        "model": "test/model",
        "choices": [{"message": {"content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
    }


def _client(handler, **kwargs) -> OpenRouterClient:
    return OpenRouterClient(api_key="test-key", transport=httpx.MockTransport(handler), **kwargs)

# ---------------------------------------------------------------------------
# OpenRouter
# ---------------------------------------------------------------------------

def test_openrouter_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    with pytest.raises(OpenRouterError, match="API key not found"):
        OpenRouterClient()


def test_openrouter_chat_success():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=_completion("hi there"))

    client = _client(handler)
    response = asyncio.run(client.chat([Message("user", "hello")]))

    assert response.content == "hi there"
    assert response.token_usage.total_tokens == 5
    assert seen[0]["messages"] == [{"role": "user", "content": "hello"}]
    assert seen[0]["stream"] is False


@patch("stepwise.openrouter_client.asyncio.sleep", new_callable=AsyncMock)
def test_openrouter_retries_server_errors(mock_sleep):
    responses = [httpx.Response(503, text="busy"), httpx.Response(200, json=_completion("ok"))]
    statuses = []

    client = _client(lambda request: responses.pop(0), on_status=statuses.append)
    response = asyncio.run(client.chat([Message("user", "hello")]))

    assert response.content == "ok"
    mock_sleep.assert_awaited_once_with(2.0)
    assert "503 error" in statuses[0]


@patch("stepwise.openrouter_client.asyncio.sleep", new_callable=AsyncMock)
def test_openrouter_rate_limit_honors_retry_after(mock_sleep):
    responses = [
        httpx.Response(429, headers={"Retry-After": "7"}, text="slow down"),
        httpx.Response(200, json=_completion()),
    ]
    client = _client(lambda request: responses.pop(0))

    asyncio.run(client.chat([Message("user", "hello")]))

    mock_sleep.assert_awaited_once_with(7.0)


@patch("stepwise.openrouter_client.asyncio.sleep", new_callable=AsyncMock)
def test_openrouter_rate_limit_backoff_has_jitter(mock_sleep):
    responses = [httpx.Response(429, text="slow down"), httpx.Response(200, json=_completion())]
    client = _client(lambda request: responses.pop(0))

    asyncio.run(client.chat([Message("user", "hello")]))

    delay = mock_sleep.await_args.args[0]
    assert 1.0 <= delay <= 2.0


@patch("stepwise.openrouter_client.asyncio.sleep", new_callable=AsyncMock)
def test_openrouter_gives_up_after_max_retries(mock_sleep):
    client = _client(lambda request: httpx.Response(500, text="down"), max_retries=2)

    with pytest.raises(OpenRouterError) as exc_info:
        asyncio.run(client.chat([Message("user", "hello")]))

    assert exc_info.value.status_code == 500
    assert mock_sleep.await_count == 2


def test_openrouter_client_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, text="bad key")

    with pytest.raises(OpenRouterError, match="401"):
        asyncio.run(_client(handler).chat([Message("user", "hello")]))
    assert len(calls) == 1


def test_openrouter_rejects_response_without_choices():
    client = _client(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(OpenRouterError, match="no choices"):
        asyncio.run(client.chat([Message("user", "hello")]))

# ---------------------------------------------------------------------------
# Other clients
# ---------------------------------------------------------------------------

def test_simple_llm_client_wraps_text():
    async def respond(messages):
        return f"echo {messages[-1].content}"

    response = asyncio.run(SimpleLLMClient(respond, model="fn").chat([Message("user", "x")]))
    assert response == ChatResponse(content="echo x", model="fn", usage={})


def test_token_usage_helpers():
    usage = TokenUsage.from_dict({"prompt_tokens": 1200, "completion_tokens": 300})
    assert usage.total_tokens == 1500
    assert usage.add(TokenUsage(1, 1, 2)).total_tokens == 1502
    assert usage.format() == "1.5K/200.0K tokens"


def test_ollama_client_maps_usage():
    def handler(request):
        assert request.url.path == "/api/chat"
        return httpx.Response(200, json={
            "message": {"content": "local reply"},
            "prompt_eval_count": 4,
            "eval_count": 6,
        })

    client = OllamaClient(model="llama3.1", transport=httpx.MockTransport(handler))
    response = asyncio.run(client.chat([Message("user", "hi")]))

    assert response.content == "local reply"
    assert response.token_usage.total_tokens == 10


def test_bedrock_body_moves_system_messages():
    body = AWSBedrockClient()._build_body(
        [Message("system", "be brief"), Message("user", "hi")], max_tokens=100
    )
    assert body["system"] == "be brief"
    assert body["messages"] == [{"role": "user", "content": "hi"}]

# ---------------------------------------------------------------------------
# Provider factory
# ---------------------------------------------------------------------------

def test_create_llm_client_openrouter():
    config = StepwiseConfig(openrouter_api_key="k", model="some/model")
    client = create_llm_client(config)
    assert isinstance(client, OpenRouterClient)
    assert client.model == "some/model"


def test_create_llm_client_other_providers():
    azure = StepwiseConfig(
        llm_provider="azure", azure_endpoint="https://x", azure_api_key="k", azure_deployment="d"
    )
    assert isinstance(create_llm_client(azure), AzureOpenAIClient)
    assert isinstance(create_llm_client(StepwiseConfig(llm_provider="bedrock")), AWSBedrockClient)
    assert isinstance(create_llm_client(StepwiseConfig(llm_provider="Ollama")), OllamaClient)


def test_create_llm_client_rejects_unknown_provider():
    with pytest.raises(ValueError, match="Unknown llm_provider"):
        create_llm_client(StepwiseConfig(llm_provider="mystery"))
    with pytest.raises(ValueError, match="Azure provider needs"):
        create_llm_client(StepwiseConfig(llm_provider="azure"))
