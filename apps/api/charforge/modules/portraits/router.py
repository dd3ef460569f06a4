from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from charforge.core.deps import get_portraits, get_store
from charforge.core.errors import NotFoundError
from charforge.modules.characters.service import CharacterStore

from .service import PortraitService

router = APIRouter(tags=["portraits"])


@router.get("/characters/{character_id}/portrait")
def api_get_portrait(
    character_id: str,
    store: CharacterStore = Depends(get_store),
    portraits: PortraitService = Depends(get_portraits),
) -> FileResponse:
    rec = store.require(character_id)
    if not rec.portrait_ref:
        raise NotFoundError("NOT_FOUND: portrait", details={"id": character_id})
    try:
        path = portraits.path_for(rec.portrait_ref)
    except ValueError:
        raise NotFoundError("NOT_FOUND: portrait", details={"id": character_id, "ref": rec.portrait_ref})
    if not path.is_file():
        raise NotFoundError("NOT_FOUND: portrait file", details={"id": character_id, "ref": rec.portrait_ref})
    return FileResponse(path, media_type="image/jpeg")
