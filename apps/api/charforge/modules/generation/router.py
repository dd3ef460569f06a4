from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from charforge.core.deps import get_generator, get_portraits, get_store
from charforge.modules.characters.schemas import StoredCharacterOut
from charforge.modules.characters.service import CharacterStore
from charforge.modules.characters.systems import GameSystem
from charforge.modules.portraits.service import PortraitService

from .schemas import CacheClearOut, GenerateIn, GenerateOut, NpcCreateIn, SuggestionsOut
from .service import CharacterGenerator, generate_and_store, generate_npc_and_store

router = APIRouter(tags=["generation"])


@router.post("/characters/generate", response_model=GenerateOut)
async def api_generate_character(
    body: GenerateIn,
    store: CharacterStore = Depends(get_store),
    generator: CharacterGenerator = Depends(get_generator),
    portraits: PortraitService = Depends(get_portraits),
) -> GenerateOut:
    out = await generate_and_store(
        generator,
        store,
        body.system,
        body.prompt,
        include_npcs=body.include_npcs,
        npc_count=body.npc_count,
        portraits=portraits,
        with_portrait=body.with_portrait and portraits.enabled,
    )
    return GenerateOut(
        character=StoredCharacterOut.from_record(out.character),
        npcs=[StoredCharacterOut.from_record(n) for n in out.npcs],
    )


@router.post("/characters/{character_id}/npcs", response_model=StoredCharacterOut)
async def api_generate_npc(
    character_id: str,
    body: NpcCreateIn | None = None,
    store: CharacterStore = Depends(get_store),
    generator: CharacterGenerator = Depends(get_generator),
) -> StoredCharacterOut:
    parent = await run_in_threadpool(store.require, character_id)
    rec = await generate_npc_and_store(generator, store, parent, body.relationship if body else None)
    return StoredCharacterOut.from_record(rec)


@router.get("/systems/{system}/suggestions", response_model=SuggestionsOut)
async def api_suggestions(
    system: GameSystem,
    refresh: bool = Query(False),
    generator: CharacterGenerator = Depends(get_generator),
) -> SuggestionsOut:
    if refresh:
        generator.refresh_suggestions(system)
    return SuggestionsOut(system=system, suggestions=await generator.suggest_concepts(system))


@router.delete("/generation/cache", response_model=CacheClearOut)
def api_clear_cache(generator: CharacterGenerator = Depends(get_generator)) -> CacheClearOut:
    return CacheClearOut(cleared=generator.clear_cache())
