from __future__ import annotations

from charforge.core.errors import ConfigError
from charforge.core.settings import Settings

from .base import TextGenerationProvider
from .mock_provider import MockProvider


def get_provider(settings: Settings) -> TextGenerationProvider:
    """
    Registry entry point: GENERATION_PROVIDER picks the implementation.
    """
    name = settings.generation_provider
    if name == "mock":
        return MockProvider()
    if name == "gemini":
        if not settings.gemini_api_key:
            raise ConfigError("GEMINI_API_KEY (or API_KEY) environment variable not set")
        # imported lazily so the mock provider works without the SDK configured
        from .gemini_provider import GeminiProvider

        return GeminiProvider(api_key=settings.gemini_api_key, model=settings.gemini_model)
    raise ConfigError(f"unknown GENERATION_PROVIDER {name!r}")
