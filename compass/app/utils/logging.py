"""Structured logging for model calls."""

import logging
from typing import Any

from compass.app.llm.executor import LLMCallContext

logger = logging.getLogger(__name__)


class StructuredLLMLogger:
    """Structured logger for model-call attempts."""

    def log_attempt(
        self,
        ctx: LLMCallContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        """Log model-call attempt with structured data."""
        log_data: dict[str, Any] = {
            "trace_id": ctx.trace_id,
            "session_id": ctx.session_id,
            "task": ctx.task,
            "attempt": attempt,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
        }

        if error_reason:
            log_data["error_reason"] = error_reason

        log_msg = f"LLM call: {ctx.task} - {outcome}"

        if outcome == "success":
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
