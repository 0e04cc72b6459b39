"""
Enrichment failure taxonomy and classifier.

Every failure that reaches the orchestrator boundary is reduced to one
ErrorCode. Classification is best-effort: typed exceptions first, then
substring matching over the message, then the ENRICHMENT_ERROR catch-all.
classify_error() itself never raises.
"""

import logging
from enum import Enum

import asyncpg
import httpx

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 1000


class ErrorCode(str, Enum):
    WIKIPEDIA_NOT_FOUND = "WIKIPEDIA_NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    AUTH_FAILED = "AUTH_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    LOCK_ACQUISITION_FAILED = "LOCK_ACQUISITION_FAILED"
    CITY_NOT_FOUND = "CITY_NOT_FOUND"
    DATABASE_ERROR = "DATABASE_ERROR"
    ENRICHMENT_ERROR = "ENRICHMENT_ERROR"


# Detected before any external call
PRECONDITION_CODES = frozenset({ErrorCode.CITY_NOT_FOUND, ErrorCode.LOCK_ACQUISITION_FAILED})

PROVIDER_CODES = frozenset({
    ErrorCode.TIMEOUT,
    ErrorCode.RATE_LIMITED,
    ErrorCode.AUTH_FAILED,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.WIKIPEDIA_NOT_FOUND,
})

DATA_QUALITY_CODES = frozenset({ErrorCode.VALIDATION_ERROR})

PERSISTENCE_CODES = frozenset({ErrorCode.DATABASE_ERROR})

# Ordered: first match wins.
_MESSAGE_PATTERNS: list[tuple[ErrorCode, tuple[str, ...]]] = [
    (ErrorCode.WIKIPEDIA_NOT_FOUND, ("404", "not found")),
    (ErrorCode.RATE_LIMITED, ("429", "rate limit")),
    (ErrorCode.TIMEOUT, ("timeout", "timed out")),
    (ErrorCode.AUTH_FAILED, (
        "401", "403", "unauthorized", "forbidden", "invalid api key", "invalid key",
    )),
    (ErrorCode.NETWORK_ERROR, ("network", "connection")),
]

_STATUS_CODES = {
    404: ErrorCode.WIKIPEDIA_NOT_FOUND,
    429: ErrorCode.RATE_LIMITED,
    401: ErrorCode.AUTH_FAILED,
    403: ErrorCode.AUTH_FAILED,
    408: ErrorCode.TIMEOUT,
}


class EnrichmentError(Exception):
    """Raised by enrichment steps that already know their error code."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return format_error(self.code, self.message)


def classify_message(message: str) -> ErrorCode:
    """Substring classification over a free-form failure message."""
    lowered = (message or "").lower()
    for code, needles in _MESSAGE_PATTERNS:
        if any(needle in lowered for needle in needles):
            return code
    return ErrorCode.ENRICHMENT_ERROR


def classify_error(error: BaseException) -> ErrorCode:
    """Map any failure signal to an ErrorCode. Never raises."""
    try:
        if isinstance(error, EnrichmentError):
            return error.code
        if isinstance(error, (TimeoutError, httpx.TimeoutException)):
            return ErrorCode.TIMEOUT
        if isinstance(error, httpx.HTTPStatusError):
            code = _STATUS_CODES.get(error.response.status_code)
            if code is not None:
                return code
            return classify_message(str(error))
        if isinstance(error, (httpx.TransportError, OSError)):
            return ErrorCode.NETWORK_ERROR
        if isinstance(error, (asyncpg.PostgresError, asyncpg.InterfaceError)):
            return ErrorCode.DATABASE_ERROR
        return classify_message(str(error))
    except Exception:
        logger.exception("Error classification failed for %r", error)
        return ErrorCode.ENRICHMENT_ERROR


def format_error(code: ErrorCode, message: str) -> str:
    """Render "[CODE] message", capped for storage in the enrichment log."""
    text = f"[{code.value}] {message}"
    if len(text) > MAX_ERROR_MESSAGE_LENGTH:
        text = text[: MAX_ERROR_MESSAGE_LENGTH - 3] + "..."
    return text


def describe_error(error: BaseException) -> tuple[ErrorCode, str]:
    """Classify and render an exception for the log and the caller."""
    code = classify_error(error)
    if isinstance(error, EnrichmentError):
        message = error.message
    else:
        message = str(error) or error.__class__.__name__
    return code, format_error(code, message)
