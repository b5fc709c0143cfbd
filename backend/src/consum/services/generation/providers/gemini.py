"""Gemini provider using the generateContent REST endpoint."""

import json
from typing import Any

import httpx
import structlog

from consum.services.exceptions import AiRequestError, ErrorDetails
from consum.services.generation.prompts import BLUEPRINT_RESPONSE_SCHEMA
from consum.services.generation.providers.base import (
    ERROR_SNIPPET_LENGTH,
    BlueprintProvider,
    GenerationParams,
    GenerationResult,
    http_error,
)

logger = structlog.get_logger()

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.7,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 11000,
    "responseMimeType": "application/json",
    "responseSchema": BLUEPRINT_RESPONSE_SCHEMA,
}


class GeminiProvider(BlueprintProvider):
    """Single-prompt provider backed by Google's Generative Language API."""

    name = "gemini"

    def __init__(self, api_key: str, model: str | None = None, **kwargs: Any):
        super().__init__(api_key, model or DEFAULT_GEMINI_MODEL, **kwargs)
        self.base_url = GEMINI_BASE_URL
        self.headers = {
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        }

    async def _request(
        self, client: httpx.AsyncClient, params: GenerationParams
    ) -> GenerationResult:
        body = {
            "contents": [{"parts": [{"text": params.prompt}]}],
            "generationConfig": GENERATION_CONFIG,
        }

        logger.debug("gemini.request_started", model=self.model, prompt_length=len(params.prompt))

        response = await client.post(
            f"{self.base_url}/models/{self.model}:generateContent",
            headers=self.headers,
            json=body,
            timeout=self.timeout,
        )

        if response.is_error:
            raise http_error(self.name, response, "Gemini request failed")

        data = response.json()
        text = _extract_candidate_text(data)
        if not text:
            raise AiRequestError(
                "Gemini response missing content",
                500,
                ErrorDetails(
                    raw_snippet=json.dumps(data)[:ERROR_SNIPPET_LENGTH],
                    provider=self.name,
                ),
            )

        return GenerationResult(raw_text=text)


def _extract_candidate_text(data: Any) -> str | None:
    """Return candidates[0].content.parts[0].text if present."""
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text else None
