"""Mapping from the error taxonomy to HTTP responses."""

import logging

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from compass.app.errors import (
    CompassError,
    ConversionAbortedError,
    ConversionCancelledError,
    ItemNotFoundError,
    ItineraryValidationError,
    LLMError,
    LLMTimeoutError,
    ParsingError,
    QuotaExceededError,
    SessionNotFoundError,
)
from compass.app.models.api import ErrorResponse

logger = logging.getLogger(__name__)


def status_for(error: Exception) -> int:
    """HTTP status for an error; aborted conversions use their cause's status."""
    if isinstance(error, ConversionAbortedError):
        return status_for(error.cause)
    if isinstance(error, ItineraryValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(error, (ItemNotFoundError, SessionNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, QuotaExceededError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(error, LLMTimeoutError):
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(error, (ParsingError, LLMError)):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(error, ConversionCancelledError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(error: CompassError) -> ErrorResponse:
    # Quota errors surface the verbatim retry-later message
    if isinstance(error, ConversionAbortedError) and isinstance(error.cause, QuotaExceededError):
        code, message = QuotaExceededError.code, QuotaExceededError.user_message
    elif isinstance(error, QuotaExceededError):
        code, message = error.code, error.user_message
    else:
        code, message = error.code, error.message
    return ErrorResponse(error=code, message=message, details=jsonable_encoder(error.details))


async def compass_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render any CompassError as an ErrorResponse."""
    assert isinstance(exc, CompassError)
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} - {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code} - {exc}")
    body = error_body(exc)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
