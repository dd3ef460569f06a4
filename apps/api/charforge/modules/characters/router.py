from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from charforge.core.deps import get_store
from charforge.core.errors import NotFoundError

from .schemas import (
    CharacterPatchIn,
    CharactersListOut,
    CountOut,
    DeleteOut,
    PageOut,
    StoredCharacterOut,
    SystemOut,
    SystemSchemaOut,
)
from .service import CharacterStore
from .systems import GameSystem, list_systems, schema_for

router = APIRouter(tags=["characters"])


def _clamp_limit(raw: int | None) -> int:
    # lock: default=50, max=200
    if raw is None:
        return 50
    try:
        v = int(raw)
    except Exception:
        return 50
    if v < 1:
        v = 1
    if v > 200:
        v = 200
    return v


def _clamp_offset(raw: int | None) -> int:
    if raw is None:
        return 0
    try:
        v = int(raw)
    except Exception:
        return 0
    return max(v, 0)


@router.get("/systems", response_model=list[SystemOut])
def api_list_systems() -> list[SystemOut]:
    return [SystemOut(**s) for s in list_systems()]


@router.get("/systems/{system}/schema", response_model=SystemSchemaOut)
def api_system_schema(system: GameSystem) -> SystemSchemaOut:
    name, contract = schema_for(system)
    return SystemSchemaOut(system=system, name=name, contract=contract)


@router.get("/characters", response_model=CharactersListOut)
def api_list_characters(
    limit: int | None = Query(None),
    offset: int | None = Query(None),
    system: Optional[GameSystem] = Query(None),
    is_npc: Optional[bool] = Query(None),
    q: Optional[str] = Query(None, description="case-insensitive substring of name or prompt"),
    deep: bool = Query(False, description="also search the full character sheet"),
    start: Optional[datetime] = Query(None, description="created_at lower bound (inclusive)"),
    end: Optional[datetime] = Query(None, description="created_at upper bound (inclusive)"),
    store: CharacterStore = Depends(get_store),
) -> CharactersListOut:
    lim = _clamp_limit(limit)
    off = _clamp_offset(offset)
    items, total = store.query(
        system=system, is_npc=is_npc, term=q, deep=deep, start=start, end=end, limit=lim, offset=off
    )
    has_more = (off + lim) < total
    return CharactersListOut(
        items=[StoredCharacterOut.from_record(r) for r in items],
        page=PageOut(offset=off, limit=lim, total=total, has_more=has_more),
    )


@router.get("/characters/count", response_model=CountOut)
def api_count_characters(store: CharacterStore = Depends(get_store)) -> CountOut:
    return CountOut(count=store.count())


@router.get("/characters/first_non_npc", response_model=StoredCharacterOut)
def api_first_non_npc(store: CharacterStore = Depends(get_store)) -> StoredCharacterOut:
    rec = store.first_non_npc()
    if rec is None:
        raise NotFoundError("NOT_FOUND: no player character stored")
    return StoredCharacterOut.from_record(rec)


@router.get("/characters/{character_id}", response_model=StoredCharacterOut)
def api_get_character(character_id: str = Path(...), store: CharacterStore = Depends(get_store)) -> StoredCharacterOut:
    return StoredCharacterOut.from_record(store.require(character_id))


@router.patch("/characters/{character_id}", response_model=StoredCharacterOut)
def api_patch_character(
    character_id: str, body: CharacterPatchIn, store: CharacterStore = Depends(get_store)
) -> StoredCharacterOut:
    rec = store.update(character_id, body.model_dump(exclude_unset=True))
    return StoredCharacterOut.from_record(rec)


@router.delete("/characters/{character_id}", response_model=DeleteOut)
def api_delete_character(character_id: str, store: CharacterStore = Depends(get_store)) -> DeleteOut:
    store.delete(character_id)
    return DeleteOut(id=character_id)
