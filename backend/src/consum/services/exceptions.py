"""Service error hierarchy for blueprint generation.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation, configuration)
- AiRequestError: Failed provider request carrying an HTTP-like status code
- BlueprintParseError: Provider output that cannot be turned into a blueprint
"""

from dataclasses import dataclass, field
from typing import Any, Optional


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (503)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Configuration errors
    """

    pass


@dataclass(frozen=True)
class ProviderMeta:
    """Provider-reported diagnostics (status/reason/message) from an error payload."""

    result: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.result or self.reason or self.message)

    def format(self) -> str:
        """Render as `result=... reason=... message=...` for log lines."""
        parts = []
        if self.result:
            parts.append(f"result={self.result}")
        if self.reason:
            parts.append(f"reason={self.reason}")
        if self.message:
            parts.append(f"message={self.message}")
        return " ".join(parts)


@dataclass(frozen=True)
class ErrorDetails:
    """Diagnostic fields extracted at the provider boundary."""

    code: Optional[str] = None
    raw_snippet: Optional[str] = None
    sanitized_snippet: Optional[str] = None
    provider: Optional[str] = None
    provider_code: Optional[str] = None
    incomplete_reason: Optional[str] = None
    provider_meta: Optional[ProviderMeta] = None
    extra: dict[str, Any] = field(default_factory=dict)


class AiRequestError(ServiceError):
    """A provider request failed.

    Attributes:
        status_code: HTTP status from the provider, or a synthetic one
            (500 empty content, 503 incomplete/unavailable, 504 timeout)
        details: Typed diagnostics for logging and classification
    """

    def __init__(self, message: str, status_code: int, details: ErrorDetails | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or ErrorDetails()

    def __repr__(self) -> str:
        return f"AiRequestError(status_code={self.status_code}, message={self.message!r})"


class ProviderConfigurationError(PermanentError):
    """Provider cannot be used: unknown name or missing credential."""

    code = "PROVIDER_CONFIG"


class BlueprintParseError(PermanentError):
    """Provider output could not be parsed into a blueprint.

    Retrying reproduces the same model behavior, so this is never retried.
    """

    SNIPPET_LENGTH = 500

    def __init__(
        self,
        message: str,
        raw_text: str,
        sanitized: str | None = None,
        schema_declined: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.raw_text = raw_text
        self.raw_snippet = raw_text[: self.SNIPPET_LENGTH]
        self.sanitized_snippet = sanitized[: self.SNIPPET_LENGTH] if sanitized else None
        self.schema_declined = schema_declined

    @property
    def code(self) -> str:
        return "SCHEMA_DECLINED" if self.schema_declined else "PARSE_ERROR"
