from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from charforge.core.deps import get_store
from charforge.modules.characters.service import CharacterStore

from .service import export_filename, render_markdown

router = APIRouter(tags=["exports"])


@router.get("/characters/{character_id}/export")
def api_export_character(character_id: str, store: CharacterStore = Depends(get_store)) -> Response:
    rec = store.require(character_id)
    return Response(
        content=render_markdown(rec),
        media_type="text/markdown; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(rec)}"'},
    )
