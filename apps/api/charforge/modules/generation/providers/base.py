from __future__ import annotations

from typing import Any, Dict, Optional, Protocol


class TextGenerationProvider(Protocol):
    """
    Pluggable text-generation interface for the character generator.

    NOTE:
    - generate_json returns the raw text payload; parsing/validation is the
      generator's job so malformed output is reported the same way for every provider.
    - transport/service failures must surface as GenerationServiceError.
    """
    name: str

    async def generate_json(
        self,
        *,
        system_instruction: Optional[str],
        prompt: str,
        response_schema: Dict[str, Any],
    ) -> str:
        ...
