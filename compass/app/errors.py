"""Error taxonomy for the itinerary pipeline.

Every error carries a ``details`` dict so raw model text and raw HTTP bodies
survive into logs and API error payloads.
"""

from typing import Any


class CompassError(Exception):
    """Base class for all pipeline errors."""

    code = "internal_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}


# Gateway errors
class LLMError(CompassError):
    """Generative backend call failed."""

    code = "llm_error"
    retryable = False


class LLMNetworkError(LLMError):
    """Transport failure talking to the generative backend."""

    code = "network_error"
    retryable = True


class LLMTimeoutError(LLMError):
    """Model call exceeded its timeout."""

    code = "timeout"
    retryable = True


class QuotaExceededError(LLMError):
    """Upstream rate/usage limit reached. Never retried automatically."""

    code = "quota_exceeded"
    user_message = (
        "The AI service is temporarily unavailable due to usage limits. "
        "Please try again in a few minutes."
    )


class LLMApiError(LLMError):
    """Non-2xx response that is not a quota signal."""

    code = "api_error"

    def __init__(self, status_code: int, body: Any, message: str | None = None) -> None:
        super().__init__(
            message or f"Generative backend returned status {status_code}",
            {"status_code": status_code, "body": body},
        )
        self.status_code = status_code
        self.body = body


class EmptyResponseError(LLMError):
    """2xx response without completion text."""

    code = "empty_response"
    retryable = True


# Extraction / validation errors
class ParsingError(CompassError):
    """No balanced JSON object could be recovered from model output."""

    code = "parsing_error"

    def __init__(self, message: str, raw_text: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, {"raw_text": raw_text, **(details or {})})
        self.raw_text = raw_text


class ItineraryValidationError(CompassError):
    """Parsed data violates the itinerary schema."""

    code = "validation_error"

    def __init__(
        self, message: str, field: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, {"field": field, **(details or {})})
        self.field = field


class ItemNotFoundError(CompassError):
    """An action referenced an item id that is not in the document."""

    code = "not_found"

    def __init__(self, item_id: str, target_view: str | None = None) -> None:
        super().__init__(
            f"No item with id '{item_id}'",
            {"item_id": item_id, "target_view": target_view},
        )
        self.item_id = item_id


class SessionNotFoundError(CompassError):
    """No planning session stored under the given id."""

    code = "not_found"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"No session with id '{session_id}'", {"session_id": session_id})
        self.session_id = session_id


# Orchestration errors
class ConversionAbortedError(CompassError):
    """A multi-week conversion failed part way; nothing was committed."""

    code = "conversion_aborted"

    def __init__(self, completed_weeks: int, total_weeks: int, cause: Exception) -> None:
        details: dict[str, Any] = {
            "completed_weeks": completed_weeks,
            "total_weeks": total_weeks,
            "cause": type(cause).__name__,
            "cause_message": str(cause),
        }
        if isinstance(cause, CompassError):
            details["cause_details"] = cause.details
        super().__init__(
            f"Conversion aborted after {completed_weeks} of {total_weeks} week(s): {cause}",
            details,
        )
        self.completed_weeks = completed_weeks
        self.total_weeks = total_weeks
        self.cause = cause


class ConversionCancelledError(CompassError):
    """Conversion was cancelled by the caller."""

    code = "cancelled"
