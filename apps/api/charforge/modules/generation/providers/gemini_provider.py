from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from charforge.core.errors import GenerationServiceError


class GeminiProvider:
    """Schema-constrained JSON generation through the google-genai async client."""
    name = "gemini"

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash", client: Optional[genai.Client] = None) -> None:
        self.model = model
        self.client = client or genai.Client(api_key=api_key)

    async def generate_json(
        self,
        *,
        system_instruction: Optional[str],
        prompt: str,
        response_schema: Dict[str, Any],
    ) -> str:
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            response_mime_type="application/json",
            response_schema=response_schema,
        )
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=config,
            )
        except genai_errors.APIError as e:
            raise GenerationServiceError(
                f"gemini request failed: {e}",
                details={"provider": self.name, "code": getattr(e, "code", None)},
            ) from e
        except httpx.HTTPError as e:
            raise GenerationServiceError(
                f"gemini transport failed: {type(e).__name__}",
                details={"provider": self.name},
            ) from e
        # blocked / empty candidates come back as None; the parser reports it
        return response.text or ""
