"""LLM gateway: submit a prompt, return the raw completion text.

Security: API keys come from settings (environment) only, never hardcoded.
Provides a scripted stub when no key is present for testing and key-less
development.

Gateways never retry; retry policy belongs to LLMCallExecutor.
"""

import json
import logging
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import openai
from openai import AsyncOpenAI

from compass.app.config import Settings, get_settings
from compass.app.errors import (
    EmptyResponseError,
    LLMApiError,
    LLMNetworkError,
    LLMTimeoutError,
    QuotaExceededError,
)

logger = logging.getLogger(__name__)

QUOTA_MARKERS = ("RESOURCE_EXHAUSTED", "insufficient_quota", "quota")


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling parameters for one model call."""

    temperature: float
    max_output_tokens: int
    top_k: int = 40
    top_p: float = 0.95


# Task presets: low temperature for extraction, higher for open conversation
EXTRACTION = GenerationConfig(temperature=0.3, max_output_tokens=4096)
ACTION = GenerationConfig(temperature=0.3, max_output_tokens=2048)
GATHERING = GenerationConfig(temperature=0.8, max_output_tokens=800)
DURATION = GenerationConfig(temperature=0.1, max_output_tokens=64)


class LLMGateway(Protocol):
    """Protocol for generative backend implementations."""

    async def generate(self, prompt: str, config: GenerationConfig) -> str:
        """Return the raw completion text for a prompt.

        Raises:
            LLMNetworkError: Transport failure
            LLMTimeoutError: Call exceeded its timeout
            QuotaExceededError: Upstream rate/usage limit reached
            LLMApiError: Any other non-2xx response
            EmptyResponseError: 2xx response without completion text
        """
        ...


def is_quota_signal(status_code: int, body: Any) -> bool:
    """Whether a non-2xx response signals rate/quota exhaustion."""
    if status_code == 429:
        return True
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            for key in ("status", "code", "type"):
                value = error.get(key)
                if isinstance(value, str) and any(m in value for m in QUOTA_MARKERS):
                    return True
        body = json.dumps(body)
    return isinstance(body, str) and "RESOURCE_EXHAUSTED" in body


class GeminiGateway:
    """Gemini generateContent REST gateway over httpx."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_seconds: float = 45.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Gemini gateway.

        Args:
            api_key: Gemini API key (read from environment)
            model: Model name
            base_url: API root, without trailing slash
            timeout_seconds: Per-request HTTP timeout
            client: Injectable httpx client (tests pass one with a MockTransport)
        """
        self._api_key = api_key
        self.model = model
        self._url = f"{base_url.rstrip('/')}/models/{model}:generateContent"
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    def _request_body(self, prompt: str, config: GenerationConfig) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": config.temperature,
                "topK": config.top_k,
                "topP": config.top_p,
                "maxOutputTokens": config.max_output_tokens,
            },
        }

    async def generate(self, prompt: str, config: GenerationConfig) -> str:
        """Call generateContent and return candidates[0].content.parts[0].text."""
        try:
            response = await self._client.post(
                self._url,
                params={"key": self._api_key},
                json=self._request_body(prompt, config),
            )
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"Gemini request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise LLMNetworkError(
                f"Failed to connect to Gemini API: {e}", {"error": type(e).__name__}
            ) from e

        body: Any
        try:
            body = response.json()
        except ValueError:
            body = response.text

        if not response.is_success:
            logger.error(f"Gemini API returned status {response.status_code}: {body}")
            if is_quota_signal(response.status_code, body):
                raise QuotaExceededError(
                    QuotaExceededError.user_message,
                    {"status_code": response.status_code, "body": body},
                )
            raise LLMApiError(response.status_code, body)

        text = _gemini_text(body)
        if not text:
            raise EmptyResponseError(
                "No text content received from Gemini API", {"body": body}
            )
        return text

    async def aclose(self) -> None:
        await self._client.aclose()


def _gemini_text(body: Any) -> str | None:
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text.strip() else None


class OpenAIGateway:
    """OpenAI chat-completions gateway."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout_seconds: float = 45.0,
        client: AsyncOpenAI | None = None,
    ):
        """Initialize OpenAI gateway.

        Args:
            api_key: OpenAI API key (read from environment)
            model: Model name to use (default: gpt-4o-mini for cost efficiency)
            timeout_seconds: Per-request timeout
            client: Injectable SDK client
        """
        # SDK retries disabled; retry policy lives in the executor
        self.client = client or AsyncOpenAI(
            api_key=api_key, timeout=timeout_seconds, max_retries=0
        )
        self.model = model

    async def generate(self, prompt: str, config: GenerationConfig) -> str:
        """Send the prompt as a single user message."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=config.temperature,
                top_p=config.top_p,
                max_tokens=config.max_output_tokens,
            )
        except openai.APITimeoutError as e:
            raise LLMTimeoutError(f"OpenAI request timed out: {e}") from e
        except openai.APIConnectionError as e:
            raise LLMNetworkError(f"Failed to connect to OpenAI API: {e}") from e
        except openai.RateLimitError as e:
            logger.error(f"OpenAI rate limit: {e.body}")
            raise QuotaExceededError(
                QuotaExceededError.user_message, {"status_code": e.status_code, "body": e.body}
            ) from e
        except openai.APIStatusError as e:
            logger.error(f"OpenAI API returned status {e.status_code}: {e.body}")
            raise LLMApiError(e.status_code, e.body) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise EmptyResponseError("OpenAI returned empty response")
        return content


STUB_REPLY = json.dumps(
    {
        "action": "REQUEST_CLARIFICATION",
        "target_view": "schedule",
        "conversational_text": (
            "No generative model is configured. Set GEMINI_API_KEY or OPENAI_API_KEY "
            "to enable itinerary planning."
        ),
    }
)


class ScriptedGateway:
    """Deterministic stub gateway (no API key required).

    Replays queued replies in order; a queued exception is raised instead of
    returned. Once the queue is empty, ``responder`` (if given) or
    ``default_reply`` answers. Every prompt is recorded for assertions.
    """

    def __init__(
        self,
        replies: Iterable[str | Exception] = (),
        default_reply: str | None = None,
        responder: Callable[[str], str] | None = None,
    ):
        self._queue: deque[str | Exception] = deque(replies)
        self._default = default_reply
        self._responder = responder
        self.prompts: list[str] = []
        self.configs: list[GenerationConfig] = []

    def enqueue(self, *replies: str | Exception) -> None:
        self._queue.extend(replies)

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: str, config: GenerationConfig) -> str:
        self.prompts.append(prompt)
        self.configs.append(config)
        if self._queue:
            reply = self._queue.popleft()
            if isinstance(reply, Exception):
                raise reply
            return reply
        if self._responder is not None:
            return self._responder(prompt)
        if self._default is not None:
            return self._default
        raise EmptyResponseError("Scripted gateway has no reply queued")


def get_llm_gateway(settings: Settings | None = None) -> LLMGateway:
    """Factory function to get the gateway for the configured provider.

    Returns:
        GeminiGateway or OpenAIGateway when a key is configured (Gemini
        preferred under ``auto``), ScriptedGateway otherwise
    """
    settings = settings or get_settings()
    provider = settings.llm_provider
    gemini_key = settings.gemini_api_key.get_secret_value() if settings.gemini_api_key else ""
    openai_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else ""

    if provider in ("auto", "gemini") and gemini_key:
        logger.info(f"Using Gemini gateway ({settings.gemini_model})")
        return GeminiGateway(
            api_key=gemini_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    if provider in ("auto", "openai") and openai_key:
        logger.info(f"Using OpenAI gateway ({settings.openai_model})")
        return OpenAIGateway(
            api_key=openai_key,
            model=settings.openai_model,
            timeout_seconds=settings.llm_timeout_seconds,
        )

    if provider != "stub":
        logger.warning(f"No API key configured for provider '{provider}', using scripted stub gateway")
    return ScriptedGateway(default_reply=STUB_REPLY)
