"""Async model-call executor with timeouts, bounded retries and cancellation.

Wraps every LLM gateway call with:
- Hard timeout per attempt (asyncio.wait_for)
- Bounded exponential-backoff retries, only for retryable errors
  (network, timeout, empty response); quota and API errors surface at once
- Cooperative cancellation via CancelToken
- Metrics and structured logging per attempt
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from compass.app.errors import ConversionCancelledError, LLMError, LLMTimeoutError
from compass.app.llm.client import GenerationConfig, LLMGateway

logger = logging.getLogger(__name__)


# Context and config types
@dataclass(frozen=True)
class LLMCallContext:
    """Context for one logical model call, for tracing."""

    task: str
    session_id: str | None = None
    trace_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class CancelToken:
    """Token for cooperative cancellation signaling."""

    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    def throw_if_cancelled(self) -> None:
        """Raise ConversionCancelledError if cancelled."""
        if self.cancelled:
            raise ConversionCancelledError("run cancelled")


@dataclass(frozen=True)
class RetryPolicy:
    """Timeout and retry configuration for a model call.

    Backoff before retry n (1-based) is ``backoff_base_seconds * 2 ** (n - 1)``.
    """

    timeout_seconds: float
    max_retries: int = 0
    backoff_base_seconds: float = 1.0

    def backoff_seconds(self, retry: int) -> float:
        return self.backoff_base_seconds * (2 ** (retry - 1))


# Metrics interface (implemented by utils.metrics)
class LLMMetrics:
    """Interface for model-call metrics."""

    def record_latency(self, task: str, outcome: str, latency_ms: float) -> None:
        """Record model-call latency."""
        pass

    def inc_error(self, task: str, reason: str) -> None:
        """Increment error counter."""
        pass


# Logging interface (implemented by utils.logging)
class LLMCallLogger:
    """Interface for structured logging."""

    def log_attempt(
        self,
        ctx: LLMCallContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        """Log model-call attempt."""
        pass


class LLMCallExecutor:
    """Runs gateway calls under a RetryPolicy."""

    def __init__(
        self,
        gateway: LLMGateway,
        metrics: LLMMetrics | None = None,
        call_logger: LLMCallLogger | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            gateway: Generative backend
            metrics: Metrics recorder (optional, defaults to no-op)
            call_logger: Structured logger (optional, defaults to no-op)
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
        """
        self.gateway = gateway
        self._metrics = metrics or LLMMetrics()
        self._logger = call_logger or LLMCallLogger()
        self._sleep = sleep_fn or asyncio.sleep

    async def generate(
        self,
        ctx: LLMCallContext,
        prompt: str,
        config: GenerationConfig,
        policy: RetryPolicy,
        cancel_token: CancelToken | None = None,
    ) -> str:
        """Call the gateway with timeout, retries and cancellation checks.

        Args:
            ctx: Call context (task name, trace id)
            prompt: Prompt text
            config: Sampling parameters
            policy: Timeout and retry configuration
            cancel_token: Cancellation token (optional, defaults to not cancelled)

        Returns:
            Raw completion text

        Raises:
            LLMError: The last error once retries are exhausted, or the first
                non-retryable error (quota, API)
            ConversionCancelledError: Cancelled before or between attempts
        """
        if cancel_token is None:
            cancel_token = CancelToken()

        for attempt in range(policy.max_retries + 1):
            # Check cancellation before each attempt
            cancel_token.throw_if_cancelled()

            attempt_start = time.monotonic()
            try:
                text = await asyncio.wait_for(
                    self.gateway.generate(prompt, config), timeout=policy.timeout_seconds
                )
            except TimeoutError:
                error: LLMError = LLMTimeoutError(
                    f"{ctx.task} call exceeded {policy.timeout_seconds}s",
                    {"timeout_seconds": policy.timeout_seconds},
                )
            except LLMError as e:
                error = e
            else:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                self._metrics.record_latency(ctx.task, "success", elapsed_ms)
                self._logger.log_attempt(ctx, attempt + 1, "success", elapsed_ms)
                return text

            elapsed_ms = (time.monotonic() - attempt_start) * 1000
            self._metrics.record_latency(ctx.task, error.code, elapsed_ms)
            self._metrics.inc_error(ctx.task, error.code)
            self._logger.log_attempt(ctx, attempt + 1, error.code, elapsed_ms, error_reason=str(error))

            if not error.retryable or attempt >= policy.max_retries:
                raise error

            delay = policy.backoff_seconds(attempt + 1)
            logger.info(
                f"Retrying {ctx.task} after {error.code} "
                f"(retry {attempt + 1}/{policy.max_retries}, backoff {delay:.1f}s)"
            )
            cancel_token.throw_if_cancelled()
            await self._sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError("retry loop exited without result")
