"""OpenAI provider using the Responses API with a strict JSON schema."""

import json
import time
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

DEFAULT_OPENAI_MODEL = "gpt-5-mini"
OPENAI_RESPONSES_URL = "https://api.openai.com/v1/responses"

RESPONSE_FORMAT: dict[str, Any] = {
    "text": {
        "verbosity": "medium",
        "format": {
            "type": "json_schema",
            "name": "convergence_blueprint",
            "schema": BLUEPRINT_RESPONSE_SCHEMA,
            "strict": True,
        },
    },
    "reasoning": {"effort": "medium"},
    "max_output_tokens": 15024,
    "stream": False,
}


class OpenAIProvider(BlueprintProvider):
    """Structured-response provider: system/user roles, schema-constrained output."""

    name = "openai"

    def __init__(self, api_key: str, model: str | None = None, **kwargs: Any):
        super().__init__(api_key, model or DEFAULT_OPENAI_MODEL, **kwargs)
        self.url = OPENAI_RESPONSES_URL
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def build_input(self, params: GenerationParams) -> list[dict[str, str]]:
        """System message (when segments exist) followed by the user message."""
        segments = params.prompt_segments
        messages = []
        if segments is not None and segments.system:
            messages.append({"role": "system", "content": segments.system})
        user_content = segments.user if segments is not None else params.prompt
        messages.append({"role": "user", "content": user_content})
        return messages

    async def _request(
        self, client: httpx.AsyncClient, params: GenerationParams
    ) -> GenerationResult:
        body = {"model": self.model, "input": self.build_input(params), **RESPONSE_FORMAT}

        started = time.monotonic()
        logger.info("openai.request_started", model=self.model, prompt_length=len(params.prompt))

        response = await client.post(
            self.url, headers=self.headers, json=body, timeout=self.timeout
        )

        if response.is_error:
            raise http_error(self.name, response, "OpenAI request failed")

        data = response.json()
        status = data.get("status") if isinstance(data, dict) else None
        incomplete = data.get("incomplete_details") if isinstance(data, dict) else None
        incomplete_reason = incomplete.get("reason") if isinstance(incomplete, dict) else None

        logger.info(
            "openai.response_received",
            model=self.model,
            status=status,
            incomplete_reason=incomplete_reason,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )

        text = extract_response_text(data)

        if not text:
            output = data.get("output") if isinstance(data, dict) else None
            preview = output[:1] if isinstance(output, list) else output
            raise AiRequestError(
                "OpenAI response missing content",
                500,
                ErrorDetails(
                    raw_snippet=json.dumps(
                        {
                            "status": status,
                            "incomplete_reason": incomplete_reason,
                            "output_preview": preview,
                        }
                    )[:ERROR_SNIPPET_LENGTH],
                    provider=self.name,
                    incomplete_reason=incomplete_reason,
                ),
            )

        if status == "incomplete":
            suffix = f" ({incomplete_reason})" if incomplete_reason else ""
            raise AiRequestError(
                f"OpenAI response incomplete{suffix}",
                503,
                ErrorDetails(
                    raw_snippet=text[:ERROR_SNIPPET_LENGTH],
                    provider=self.name,
                    incomplete_reason=incomplete_reason or "unknown",
                ),
            )

        return GenerationResult(raw_text=text)


def extract_response_text(data: Any) -> str:
    """Coalesce every text-bearing output chunk into one trimmed string."""
    output = data.get("output") if isinstance(data, dict) else None
    if not isinstance(output, list):
        return ""

    chunks: list[str] = []
    for item in output:
        content = item.get("content") if isinstance(item, dict) else None
        if not isinstance(content, list):
            continue
        for piece in content:
            if not isinstance(piece, dict):
                continue
            if piece.get("type") == "output_text" and isinstance(piece.get("text"), str):
                chunks.append(piece["text"])
            elif piece.get("type") == "output_json_schema" and piece.get("json_schema"):
                schema_chunk = piece["json_schema"]
                payload = schema_chunk
                if isinstance(schema_chunk, dict):
                    payload = schema_chunk.get("output", schema_chunk)
                chunks.append(payload if isinstance(payload, str) else json.dumps(payload))
            elif isinstance(piece.get("text"), str):
                chunks.append(piece["text"])
            elif isinstance(piece.get("output"), str):
                chunks.append(piece["output"])

    return "".join(chunks).strip()
