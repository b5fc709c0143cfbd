"""Entry point for a single provider call, with the forced-failure hook."""

import httpx
import structlog

from consum.core.config import Settings
from consum.models.generation_request import GenerationRequest
from consum.services.exceptions import AiRequestError, ErrorDetails, ServiceError
from consum.services.generation.errors import truncate_snippet
from consum.services.generation.providers import create_provider, resolve_provider_name
from consum.services.generation.providers.base import GenerationParams

logger = structlog.get_logger()

FORCED_FAILURE_MESSAGES = {
    400: "Forced bad request for testing",
    401: "Forced unauthorized for testing",
    403: "Forced forbidden for testing",
    404: "Forced not found for testing",
    429: "Forced rate limit for testing",
    500: "Forced internal error for testing",
    502: "Forced bad gateway for testing",
    503: "Forced service unavailable for testing",
}


def check_forced_failure(value: str | None) -> None:
    """Raise the configured synthetic failure, if any.

    Test-only instrumentation. The setting is process-wide, so every attempt in
    the process observes the same failure while it is set.

    Args:
        value: LLM_FORCE_FAILURE value: off | timeout | incomplete | <http-status>

    Raises:
        AiRequestError: The forced failure
    """
    mode = (value or "").strip().lower()
    if not mode or mode == "off":
        return

    if mode == "timeout":
        raise AiRequestError(
            "Forced provider timeout for testing", 503, ErrorDetails(code="ETIMEDOUT")
        )

    if mode == "incomplete":
        raise AiRequestError(
            "Forced incomplete response for testing",
            503,
            ErrorDetails(incomplete_reason="forced"),
        )

    if mode.isdigit():
        status_code = int(mode)
        raise AiRequestError(
            FORCED_FAILURE_MESSAGES.get(status_code, "Forced provider failure for testing"),
            status_code,
            ErrorDetails(code=f"FORCED_{status_code}"),
        )

    logger.warning("llm.force_failure_unrecognized", value=mode)


async def generate_blueprint_draft(
    request: GenerationRequest,
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> str:
    """Call the selected provider and return its raw text.

    Args:
        request: Stored generation payload
        settings: Application settings (provider default, credentials, models)
        http_client: Optional shared client (tests inject a mock transport)

    Returns:
        Raw provider text, not yet parsed

    Raises:
        AiRequestError: Provider failure or unexpected error (wrapped as 503)
        ProviderConfigurationError: Unknown provider or missing credential
    """
    check_forced_failure(settings.llm_force_failure)

    provider_name = resolve_provider_name(request.provider, settings.llm_provider)
    provider = create_provider(provider_name, settings, http_client=http_client)
    logger.info("llm.provider_selected", provider=provider.name, model=provider.model)

    try:
        result = await provider.generate_blueprint(
            GenerationParams(prompt=request.prompt, prompt_segments=request.prompt_segments)
        )
    except ServiceError:
        raise
    except Exception as e:
        logger.error("llm.provider_error", provider=provider.name, error=str(e), exc_info=True)
        raise AiRequestError(
            "AI service temporarily unavailable",
            503,
            ErrorDetails(provider=provider.name, raw_snippet=truncate_snippet(str(e))),
        ) from e

    return result.raw_text
