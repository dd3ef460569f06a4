from .base import TextGenerationProvider
from .mock_provider import MockProvider
from .registry import get_provider

__all__ = ["MockProvider", "TextGenerationProvider", "get_provider"]
