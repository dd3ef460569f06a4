from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from charforge.core.errors import UnsupportedSystemError
from charforge.core.storage import REF_PREFIX

from .systems import GameSystem, coerce_system


# --- character sheets (one variant per GameSystem) ---
class _Sheet(BaseModel):
    # camelCase on the wire, matching the generation contracts
    model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=to_camel)


class Attack(_Sheet):
    name: str
    bonus: str
    damage: str


class AbilityScores(_Sheet):
    strength: int
    dexterity: int
    constitution: int
    intelligence: int
    wisdom: int
    charisma: int


class Proficiencies(_Sheet):
    weapons: List[str]
    armor: List[str]
    tools: List[str]


class SkillRank(_Sheet):
    name: str
    rank: str


class BladesAttributes(_Sheet):
    insight: int
    prowess: int
    resolve: int


class ActionRating(_Sheet):
    action: str
    rating: int


class GearItem(_Sheet):
    name: str
    load: int


class HarmTrack(_Sheet):
    level3: str
    level2: str
    level1: str


class CharacterSheet(_Sheet):
    """Fields every system shares; bullet lists conventionally hold 3-5 entries."""
    name: str
    appearance: List[str]
    personality: List[str]
    backstory: List[str]
    equipment: List[str]


class DndCharacter(CharacterSheet):
    race: str
    class_name: str = Field(alias="class")
    background: str
    alignment: str
    hit_points: int
    armor_class: int
    speed: str
    stats: AbilityScores
    skills: List[str]
    proficiencies: Proficiencies
    attacks: List[Attack]


class Pf2eCharacter(CharacterSheet):
    ancestry: str
    heritage: str
    background: str
    class_name: str = Field(alias="class")
    alignment: str
    hit_points: int
    armor_class: int
    speed: str
    attributes: AbilityScores
    skills: List[SkillRank]
    attacks: List[Attack]


class BladesCharacter(CharacterSheet):
    playbook: str
    heritage: str
    background: str
    vice: str
    purveyor: str
    aliases: List[str]
    drives: List[str]
    attributes: BladesAttributes
    action_ratings: List[ActionRating]
    special_abilities: List[str]
    friends: List[str]
    gear: List[GearItem]
    harm: HarmTrack


Character = Union[DndCharacter, Pf2eCharacter, BladesCharacter]

CHARACTER_MODELS: Dict[GameSystem, Type[CharacterSheet]] = {
    GameSystem.DND5E: DndCharacter,
    GameSystem.PF2E: Pf2eCharacter,
    GameSystem.BLADES: BladesCharacter,
}


def character_model(system: Any) -> Type[CharacterSheet]:
    s = coerce_system(system)
    try:
        return CHARACTER_MODELS[s]
    except KeyError:
        raise UnsupportedSystemError(f"no character model for {s.value!r}", details={"system": s.value})


def parse_character(system: Any, data: Any) -> CharacterSheet:
    """Validate raw data against the system's variant; raises pydantic.ValidationError."""
    model = character_model(system)
    if isinstance(data, CharacterSheet):
        if type(data) is not model:
            data = data.model_dump(by_alias=True)
        else:
            return data
    return model.model_validate(data)


def character_to_dict(character: CharacterSheet) -> Dict[str, Any]:
    return character.model_dump(by_alias=True)


def _dnd_summary(c: DndCharacter) -> str:
    return f"{c.race} {c.class_name}"


def _pf2e_summary(c: Pf2eCharacter) -> str:
    return f"{c.ancestry} {c.class_name}"


def _blades_summary(c: BladesCharacter) -> str:
    return c.playbook


_SUMMARIES: Dict[GameSystem, Callable[[Any], str]] = {
    GameSystem.DND5E: _dnd_summary,
    GameSystem.PF2E: _pf2e_summary,
    GameSystem.BLADES: _blades_summary,
}


def summary_line(system: Any, character: CharacterSheet) -> str:
    """Short "what is this character" line used in list views."""
    s = coerce_system(system)
    fn = _SUMMARIES.get(s)
    if fn is None:
        raise UnsupportedSystemError(f"no summary for {s.value!r}", details={"system": s.value})
    return fn(character)


# --- stored records ---
class StoredCharacter(BaseModel):
    id: str
    system: GameSystem
    prompt: str
    character: Character
    is_npc: bool = False
    portrait_ref: Optional[str] = None
    created_at: str
    updated_at: str

    @model_validator(mode="before")
    @classmethod
    def _character_matches_system(cls, data: Any) -> Any:
        # the tag decides the shape; never infer the system from the fields
        if isinstance(data, dict) and "system" in data and "character" in data:
            data = dict(data)
            data["character"] = parse_character(data["system"], data["character"])
        return data

    @property
    def name(self) -> str:
        return self.character.name


class PageOut(BaseModel):
    offset: int
    limit: int
    total: int
    has_more: bool


class StoredCharacterOut(StoredCharacter):
    summary: str = ""

    @classmethod
    def from_record(cls, rec: StoredCharacter) -> "StoredCharacterOut":
        return cls(
            id=rec.id,
            system=rec.system,
            prompt=rec.prompt,
            character=rec.character,
            is_npc=rec.is_npc,
            portrait_ref=rec.portrait_ref,
            created_at=rec.created_at,
            updated_at=rec.updated_at,
            summary=summary_line(rec.system, rec.character),
        )


class CharactersListOut(BaseModel):
    items: List[StoredCharacterOut]
    page: PageOut


class CharacterPatchIn(BaseModel):
    prompt: Optional[str] = None
    is_npc: Optional[bool] = None
    character: Optional[Dict[str, Any]] = None
    portrait_ref: Optional[str] = None

    @field_validator("portrait_ref")
    @classmethod
    def _portrait_ref_inside_storage(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.startswith(REF_PREFIX) or ".." in v[len(REF_PREFIX) :].replace("\\", "/").split("/"):
            raise ValueError("portrait_ref must be a storage:// ref inside the storage root")
        return v


class CountOut(BaseModel):
    count: int


class DeleteOut(BaseModel):
    id: str
    deleted: bool = True


class SystemOut(BaseModel):
    id: GameSystem
    label: str
    name: str


class SystemSchemaOut(BaseModel):
    system: GameSystem
    name: str
    contract: Dict[str, Any]
