from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel, Field

from charforge.modules.characters.schemas import CharacterSheet, StoredCharacter, StoredCharacterOut
from charforge.modules.characters.systems import GameSystem

MAX_NPCS = 3


@dataclass
class GenerationResult:
    """One generated main character plus 0-3 NPCs of the same system."""
    system: GameSystem
    character: CharacterSheet
    npcs: List[CharacterSheet] = field(default_factory=list)


@dataclass
class StoredGeneration:
    character: StoredCharacter
    npcs: List[StoredCharacter] = field(default_factory=list)
    portrait_ref: Optional[str] = None


class GenerateIn(BaseModel):
    system: GameSystem
    prompt: str
    include_npcs: bool = False
    npc_count: int = Field(1, ge=0, le=MAX_NPCS)
    with_portrait: bool = False


class GenerateOut(BaseModel):
    character: StoredCharacterOut
    npcs: List[StoredCharacterOut] = Field(default_factory=list)


class NpcCreateIn(BaseModel):
    relationship: Optional[str] = None


class SuggestionsOut(BaseModel):
    system: GameSystem
    suggestions: List[str]


class CacheClearOut(BaseModel):
    cleared: int
