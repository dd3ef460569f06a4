from __future__ import annotations

from pathlib import Path
from typing import Optional
from urllib.parse import quote

import httpx

from charforge.core import storage
from charforge.core.ids import new_ulid
from charforge.core.observability import emit
from charforge.modules.characters.systems import GameSystem, short_label


class PortraitService:
    """
    Optional portrait images from the Pollinations image endpoint.

    fetch() may raise; callers treat portraits as best-effort and carry on
    without one.
    """

    def __init__(
        self,
        *,
        storage_root: str,
        base_url: str = "https://image.pollinations.ai/prompt",
        model: str = "flux",
        width: int = 512,
        height: int = 512,
        timeout_s: float = 60.0,
        enabled: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.storage_root = storage_root
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.width = width
        self.height = height
        self.timeout_s = timeout_s
        self.enabled = enabled
        self._transport = transport

    def image_prompt(self, system: GameSystem, concept: str) -> str:
        return f"Character portrait for {short_label(system)}, fantasy illustration: {concept}"

    async def fetch(self, system: GameSystem, concept: str) -> Optional[bytes]:
        if not self.enabled:
            return None
        url = f"{self.base_url}/{quote(self.image_prompt(system, concept), safe='')}"
        params = {"model": self.model, "width": self.width, "height": self.height, "nologo": "true"}
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            ctype = resp.headers.get("content-type", "")
            if not ctype.startswith("image/"):
                emit("warning", "portrait.skipped", f"unexpected content-type {ctype!r}", module=__name__)
                return None
            return resp.content

    def save(self, image: bytes) -> str:
        return storage.write_blob(self.storage_root, f"portraits/{new_ulid()}.jpg", image)

    def path_for(self, ref: str) -> Path:
        return storage.ref_to_path(self.storage_root, ref)
