"""Error classification for blueprint generation failures.

Classification is a pure function of the failure itself (exception type,
HTTP status, error code). It never looks at retry history.
"""

from enum import Enum

import httpx

from consum.services.exceptions import (
    AiRequestError,
    BlueprintParseError,
    PermanentError,
    ProviderConfigurationError,
    TransientError,
)

MAX_SNIPPET_LENGTH = 300
TRUNCATION_MARKER = "…"

RETRIABLE_ERROR_CODES = frozenset({"ETIMEDOUT", "ECONNRESET", "ECONNREFUSED", "ECONNECTION"})


class ErrorClassification(str, Enum):
    """Retry verdict for a failure."""

    RETRIABLE = "RETRIABLE"
    NON_RETRIABLE = "NON_RETRIABLE"


def classify_error(error: BaseException) -> ErrorClassification:
    """Classify a failure into retriable / non-retriable.

    Classification rules (first match wins):
        - Parse failures (incl. schema declination) → NON_RETRIABLE
        - HTTP 429 and 5xx → RETRIABLE
        - Other HTTP 4xx → NON_RETRIABLE
        - Timeout / connection error codes → RETRIABLE
        - TransientError → RETRIABLE, PermanentError → NON_RETRIABLE
        - httpx transport errors, TimeoutError, ConnectionError → RETRIABLE
        - Anything else → NON_RETRIABLE

    Args:
        error: Exception raised anywhere in a generation attempt

    Returns:
        ErrorClassification for the failure
    """
    if isinstance(error, BlueprintParseError):
        return ErrorClassification.NON_RETRIABLE

    status = get_status_code(error)
    if status is not None:
        if status == 429 or status >= 500:
            return ErrorClassification.RETRIABLE
        if 400 <= status < 500:
            return ErrorClassification.NON_RETRIABLE

    if get_error_code(error) in RETRIABLE_ERROR_CODES:
        return ErrorClassification.RETRIABLE

    if isinstance(error, TransientError):
        return ErrorClassification.RETRIABLE
    if isinstance(error, PermanentError):
        return ErrorClassification.NON_RETRIABLE

    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorClassification.RETRIABLE
    if isinstance(error, (TimeoutError, ConnectionError)):
        return ErrorClassification.RETRIABLE

    return ErrorClassification.NON_RETRIABLE


def is_retriable(error: BaseException) -> bool:
    return classify_error(error) is ErrorClassification.RETRIABLE


def get_status_code(error: BaseException) -> int | None:
    """HTTP-like status carried by the error, if any."""
    if isinstance(error, AiRequestError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def get_error_code(error: BaseException) -> str | None:
    """Machine-readable error code for diagnostics, if any."""
    if isinstance(error, AiRequestError):
        details = error.details
        if details.code:
            return details.code
        if details.provider_code:
            return details.provider_code
        if details.provider_meta and details.provider_meta.result:
            return details.provider_meta.result
        return None
    if isinstance(error, (BlueprintParseError, ProviderConfigurationError)):
        return error.code
    if isinstance(error, httpx.TimeoutException) or isinstance(error, TimeoutError):
        return "ETIMEDOUT"
    if isinstance(error, ConnectionRefusedError):
        return "ECONNREFUSED"
    if isinstance(error, ConnectionResetError):
        return "ECONNRESET"
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return "ECONNECTION"
    return None


def truncate_snippet(value: str | None, limit: int = MAX_SNIPPET_LENGTH) -> str | None:
    """Bound a diagnostic string to `limit` characters plus a truncation marker."""
    if not value:
        return None
    if len(value) <= limit:
        return value
    return f"{value[:limit]}{TRUNCATION_MARKER}"


def extract_raw_snippet(error: BaseException) -> str | None:
    """Best diagnostic snippet available on the error, bounded for storage/logging."""
    if isinstance(error, AiRequestError):
        for candidate in (error.details.raw_snippet, error.details.sanitized_snippet):
            if candidate and candidate.strip():
                return truncate_snippet(candidate)
        return None

    if isinstance(error, BlueprintParseError):
        return truncate_snippet(error.sanitized_snippet or error.raw_snippet)

    return None
