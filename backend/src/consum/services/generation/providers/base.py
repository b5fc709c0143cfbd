"""Provider interface shared by every blueprint generation backend."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from consum.models.generation_request import PromptSegments
from consum.services.exceptions import AiRequestError, ErrorDetails, ProviderMeta

DEFAULT_TIMEOUT_SECONDS = 120.0
ERROR_SNIPPET_LENGTH = 500


@dataclass(frozen=True)
class GenerationParams:
    prompt: str
    prompt_segments: Optional[PromptSegments] = None


@dataclass(frozen=True)
class GenerationResult:
    raw_text: str


class BlueprintProvider(ABC):
    """A backend that turns a prompt into raw generated text.

    Subclasses implement `_request`; transport failures are converted into
    AiRequestError here so callers only ever see typed provider errors.
    """

    name: str = ""

    def __init__(
        self,
        api_key: str,
        model: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._http_client = http_client

    async def generate_blueprint(self, params: GenerationParams) -> GenerationResult:
        """Generate raw blueprint text for a prompt.

        Raises:
            AiRequestError: Upstream HTTP failure, empty/incomplete content,
                timeout (504) or connection failure (503)
        """
        try:
            if self._http_client is not None:
                return await self._request(self._http_client, params)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await self._request(client, params)
        except httpx.TimeoutException as e:
            raise AiRequestError(
                f"{self.name} request timed out after {self.timeout}s",
                504,
                ErrorDetails(code="ETIMEDOUT", provider=self.name, raw_snippet=str(e) or None),
            ) from e
        except httpx.TransportError as e:
            raise AiRequestError(
                f"{self.name} connection error: {e}",
                503,
                ErrorDetails(code="ECONNECTION", provider=self.name, raw_snippet=str(e) or None),
            ) from e

    @abstractmethod
    async def _request(
        self, client: httpx.AsyncClient, params: GenerationParams
    ) -> GenerationResult: ...


def read_error_payload(response: httpx.Response) -> tuple[Any, str]:
    """Read an error body as JSON when possible, falling back to text.

    Returns:
        (parsed payload or raw text or None, raw text)
    """
    raw = response.text or ""
    if not raw:
        return None, raw
    try:
        return json.loads(raw), raw
    except ValueError:
        return raw, raw


def extract_provider_meta(payload: Any) -> ProviderMeta:
    """Best-effort extraction of status/reason/message from an error payload.

    Handles the common `{"error": {"status", "code", "reason", "message"}}`
    shape as well as flat payloads.
    """
    if isinstance(payload, str):
        return ProviderMeta(message=payload.strip() or None)
    if not isinstance(payload, dict):
        return ProviderMeta()

    section = payload.get("error") if isinstance(payload.get("error"), dict) else {}

    def first_str(*candidates: Any) -> str | None:
        for candidate in candidates:
            if isinstance(candidate, str) and candidate:
                return candidate
        return None

    return ProviderMeta(
        result=first_str(payload.get("result"), section.get("status"), section.get("code")),
        reason=first_str(payload.get("reason"), section.get("reason"), section.get("status")),
        message=first_str(section.get("message"), payload.get("message")),
    )


def extract_provider_code(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    section = payload.get("error")
    if isinstance(section, dict):
        code = section.get("code")
        if isinstance(code, (str, int)) and code != "":
            return str(code)
    code = payload.get("code")
    return code if isinstance(code, str) and code else None


def http_error(provider: str, response: httpx.Response, default_message: str) -> AiRequestError:
    """Build a typed error for a non-2xx provider response."""
    payload, raw = read_error_payload(response)
    meta = extract_provider_meta(payload)
    return AiRequestError(
        meta.message or default_message,
        response.status_code,
        ErrorDetails(
            raw_snippet=raw[:ERROR_SNIPPET_LENGTH] or None,
            provider=provider,
            provider_code=extract_provider_code(payload),
            provider_meta=None if meta.is_empty() else meta,
        ),
    )
