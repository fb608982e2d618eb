"""Tests for the LLM gateways.

All tests are deterministic and do not make real network calls.
"""

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from pydantic import SecretStr

from compass.app.config import Settings
from compass.app.errors import (
    EmptyResponseError,
    LLMApiError,
    LLMNetworkError,
    LLMTimeoutError,
    QuotaExceededError,
)
from compass.app.llm.client import (
    ACTION,
    EXTRACTION,
    STUB_REPLY,
    GeminiGateway,
    OpenAIGateway,
    ScriptedGateway,
    get_llm_gateway,
    is_quota_signal,
)

GEMINI_OK = {"candidates": [{"content": {"parts": [{"text": '{"ok": true}'}]}}]}


def _gemini(handler: Callable[[httpx.Request], httpx.Response]) -> GeminiGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiGateway(api_key="test_key", model="gemini-test", base_url="https://gemini.test/v1", client=client)


def _openai_error_response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", "https://api.openai.test/v1/chat/completions"))


@pytest.mark.asyncio
async def test_gemini_returns_candidate_text() -> None:
    """Test that the first candidate's text is returned and the request is well formed."""
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=GEMINI_OK)

    text = await _gemini(handler).generate("hello", EXTRACTION)

    assert text == '{"ok": true}'
    assert seen["url"].startswith("https://gemini.test/v1/models/gemini-test:generateContent")
    assert "key=test_key" in seen["url"]
    assert seen["body"]["contents"][0]["parts"][0]["text"] == "hello"
    assert seen["body"]["generationConfig"] == {
        "temperature": 0.3,
        "topK": 40,
        "topP": 0.95,
        "maxOutputTokens": 4096,
    }


@pytest.mark.asyncio
async def test_gemini_429_is_quota() -> None:
    """Test that HTTP 429 maps to QuotaExceededError with the user-facing message."""
    gateway = _gemini(lambda request: httpx.Response(429, json={"error": {"code": 429}}))

    with pytest.raises(QuotaExceededError) as exc_info:
        await gateway.generate("hello", ACTION)

    assert exc_info.value.message == QuotaExceededError.user_message
    assert exc_info.value.details["status_code"] == 429


@pytest.mark.asyncio
async def test_gemini_resource_exhausted_body_is_quota() -> None:
    """Test that a RESOURCE_EXHAUSTED status in the body is a quota signal on any code."""
    body = {"error": {"code": 403, "status": "RESOURCE_EXHAUSTED", "message": "Quota exceeded"}}
    gateway = _gemini(lambda request: httpx.Response(403, json=body))

    with pytest.raises(QuotaExceededError) as exc_info:
        await gateway.generate("hello", ACTION)

    assert exc_info.value.details["body"] == body


@pytest.mark.asyncio
async def test_gemini_server_error_is_api_error() -> None:
    """Test that other non-2xx statuses carry status and body."""
    gateway = _gemini(lambda request: httpx.Response(500, json={"error": {"message": "boom"}}))

    with pytest.raises(LLMApiError) as exc_info:
        await gateway.generate("hello", ACTION)

    assert exc_info.value.status_code == 500
    assert exc_info.value.body == {"error": {"message": "boom"}}
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_gemini_non_json_error_body_kept_as_text() -> None:
    """Test that a non-JSON error body is preserved verbatim."""
    gateway = _gemini(lambda request: httpx.Response(502, text="Bad Gateway"))

    with pytest.raises(LLMApiError) as exc_info:
        await gateway.generate("hello", ACTION)

    assert exc_info.value.body == "Bad Gateway"


@pytest.mark.asyncio
async def test_gemini_missing_text_is_empty_response() -> None:
    """Test that a 2xx response without candidate text raises EmptyResponseError."""
    gateway = _gemini(lambda request: httpx.Response(200, json={"candidates": []}))

    with pytest.raises(EmptyResponseError):
        await gateway.generate("hello", ACTION)


@pytest.mark.asyncio
async def test_gemini_connect_error_is_network_error() -> None:
    """Test that transport failures map to LLMNetworkError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(LLMNetworkError) as exc_info:
        await _gemini(handler).generate("hello", ACTION)

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_gemini_read_timeout_is_timeout() -> None:
    """Test that httpx timeouts map to LLMTimeoutError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(LLMTimeoutError):
        await _gemini(handler).generate("hello", ACTION)


def test_is_quota_signal() -> None:
    """Test quota detection on status codes and bodies."""
    assert is_quota_signal(429, None)
    assert is_quota_signal(403, {"error": {"type": "insufficient_quota"}})
    assert is_quota_signal(400, "status: RESOURCE_EXHAUSTED")
    assert not is_quota_signal(500, {"error": {"message": "internal"}})
    assert not is_quota_signal(400, "bad request")


def _openai_gateway(create: AsyncMock) -> OpenAIGateway:
    mock_client = MagicMock()
    mock_client.chat.completions.create = create
    return OpenAIGateway(api_key="test_key", client=mock_client)


@pytest.mark.asyncio
async def test_openai_returns_message_content() -> None:
    """Test that the first choice's message content is returned."""
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = '{"action": "REQUEST_CLARIFICATION"}'
    create = AsyncMock(return_value=mock_response)

    text = await _openai_gateway(create).generate("hello", ACTION)

    assert text == '{"action": "REQUEST_CLARIFICATION"}'
    create.assert_called_once()
    kwargs = create.call_args.kwargs
    assert kwargs["messages"] == [{"role": "user", "content": "hello"}]
    assert kwargs["max_tokens"] == 2048


@pytest.mark.asyncio
async def test_openai_empty_content_is_empty_response() -> None:
    """Test that blank content raises EmptyResponseError."""
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = "   "

    with pytest.raises(EmptyResponseError):
        await _openai_gateway(AsyncMock(return_value=mock_response)).generate("hello", ACTION)


@pytest.mark.asyncio
async def test_openai_rate_limit_is_quota() -> None:
    """Test that RateLimitError maps to QuotaExceededError."""
    error = openai.RateLimitError(
        "Rate limit reached",
        response=_openai_error_response(429),
        body={"error": {"type": "insufficient_quota"}},
    )

    with pytest.raises(QuotaExceededError) as exc_info:
        await _openai_gateway(AsyncMock(side_effect=error)).generate("hello", ACTION)

    assert exc_info.value.details["status_code"] == 429


@pytest.mark.asyncio
async def test_openai_status_error_is_api_error() -> None:
    """Test that other status errors map to LLMApiError."""
    error = openai.InternalServerError(
        "Server error", response=_openai_error_response(500), body={"error": "boom"}
    )

    with pytest.raises(LLMApiError) as exc_info:
        await _openai_gateway(AsyncMock(side_effect=error)).generate("hello", ACTION)

    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_openai_timeout_and_connection_errors() -> None:
    """Test that SDK transport errors map to timeout and network errors."""
    request = httpx.Request("POST", "https://api.openai.test/v1/chat/completions")

    with pytest.raises(LLMTimeoutError):
        await _openai_gateway(AsyncMock(side_effect=openai.APITimeoutError(request=request))).generate(
            "hello", ACTION
        )

    with pytest.raises(LLMNetworkError):
        await _openai_gateway(
            AsyncMock(side_effect=openai.APIConnectionError(request=request))
        ).generate("hello", ACTION)


@pytest.mark.asyncio
async def test_scripted_gateway_replays_queue_then_default() -> None:
    """Test that queued replies come first, exceptions are raised, then the default answers."""
    gateway = ScriptedGateway(["first", LLMNetworkError("down")], default_reply="default")

    assert await gateway.generate("p1", ACTION) == "first"
    with pytest.raises(LLMNetworkError):
        await gateway.generate("p2", ACTION)
    assert await gateway.generate("p3", EXTRACTION) == "default"

    assert gateway.prompts == ["p1", "p2", "p3"]
    assert gateway.configs[-1] is EXTRACTION
    assert gateway.call_count == 3


@pytest.mark.asyncio
async def test_scripted_gateway_responder_and_exhaustion() -> None:
    """Test that the responder sees the prompt and an empty script raises."""
    echo = ScriptedGateway(responder=lambda prompt: prompt.upper())
    assert await echo.generate("abc", ACTION) == "ABC"

    with pytest.raises(EmptyResponseError):
        await ScriptedGateway().generate("abc", ACTION)


def test_get_llm_gateway_returns_stub_without_keys() -> None:
    """Test that the factory falls back to the scripted stub when no key is configured."""
    settings = Settings(_env_file=None, llm_provider="auto", gemini_api_key=None, openai_api_key=None)

    gateway = get_llm_gateway(settings)

    assert isinstance(gateway, ScriptedGateway)
    assert gateway._default == STUB_REPLY


def test_get_llm_gateway_prefers_gemini() -> None:
    """Test that Gemini is chosen under auto when both keys are present."""
    settings = Settings(
        _env_file=None,
        llm_provider="auto",
        gemini_api_key=SecretStr("g-key"),
        openai_api_key=SecretStr("o-key"),
    )

    assert isinstance(get_llm_gateway(settings), GeminiGateway)


def test_get_llm_gateway_explicit_openai() -> None:
    """Test that an explicit openai provider skips Gemini."""
    settings = Settings(
        _env_file=None,
        llm_provider="openai",
        gemini_api_key=SecretStr("g-key"),
        openai_api_key=SecretStr("o-key"),
    )

    assert isinstance(get_llm_gateway(settings), OpenAIGateway)
