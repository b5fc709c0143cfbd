"""Blueprint provider adapters and the factory that selects one."""

import httpx

from consum.core.config import SUPPORTED_PROVIDERS, Settings
from consum.services.exceptions import ProviderConfigurationError
from consum.services.generation.providers.base import (
    BlueprintProvider,
    GenerationParams,
    GenerationResult,
)
from consum.services.generation.providers.gemini import GeminiProvider
from consum.services.generation.providers.openai import OpenAIProvider

PROVIDER_CLASSES: dict[str, type[BlueprintProvider]] = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
}

CREDENTIAL_ENV_VARS = {
    "gemini": "GOOGLE_AI_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def resolve_provider_name(override: str | None, default: str) -> str:
    """Pick the provider for a request: explicit override, else configured default.

    Raises:
        ProviderConfigurationError: If the resulting name is not a known provider
    """
    name = (override or default or "").strip().lower()
    if name not in SUPPORTED_PROVIDERS:
        raise ProviderConfigurationError(
            f"Unsupported LLM provider '{name}'. Expected one of: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    return name


def create_provider(
    name: str, settings: Settings, http_client: httpx.AsyncClient | None = None
) -> BlueprintProvider:
    """Build the adapter for a resolved provider name.

    Raises:
        ProviderConfigurationError: If the provider's credential is not configured
    """
    provider_name = resolve_provider_name(name, settings.llm_provider)
    api_key = settings.api_key_for(provider_name)
    if not api_key:
        raise ProviderConfigurationError(
            f"{CREDENTIAL_ENV_VARS[provider_name]} is required for the {provider_name} provider"
        )

    provider_cls = PROVIDER_CLASSES[provider_name]
    return provider_cls(
        api_key,
        settings.model_for(provider_name),
        http_client=http_client,
        timeout=settings.llm_request_timeout_seconds,
    )


__all__ = [
    "BlueprintProvider",
    "GenerationParams",
    "GenerationResult",
    "GeminiProvider",
    "OpenAIProvider",
    "create_provider",
    "resolve_provider_name",
]
