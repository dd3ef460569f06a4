"""
Game systems and their structured-output contracts.

A contract is the response schema handed to the text-generation service
(OBJECT / ARRAY / STRING / INTEGER nodes with `required` lists). The fields
shared by every system (name, appearance, personality, backstory, equipment)
live in SHARED_PROPERTIES and are composed into each contract, so they cannot
drift apart between systems.
"""
from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Dict, List, Tuple

from charforge.core.errors import UnsupportedSystemError


class GameSystem(str, Enum):
    DND5E = "dnd5e"
    PF2E = "pf2e"
    BLADES = "blades"


Contract = Dict[str, Any]


def _string(description: str | None = None) -> Dict[str, Any]:
    node: Dict[str, Any] = {"type": "STRING"}
    if description:
        node["description"] = description
    return node


def _integer(description: str | None = None) -> Dict[str, Any]:
    node: Dict[str, Any] = {"type": "INTEGER"}
    if description:
        node["description"] = description
    return node


def _array(items: Dict[str, Any], description: str | None = None) -> Dict[str, Any]:
    node: Dict[str, Any] = {"type": "ARRAY", "items": items}
    if description:
        node["description"] = description
    return node


def _object(properties: Dict[str, Any], required: List[str] | None = None) -> Dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": properties,
        "required": list(required if required is not None else properties.keys()),
    }


def _bullets(what: str) -> Dict[str, Any]:
    return _array(_string(), f"A list of 3-5 bullet points {what}.")


SHARED_PROPERTIES: Dict[str, Any] = {
    "name": _string(),
    "appearance": _bullets("describing the character's physical appearance and clothing"),
    "personality": _bullets("describing the character's actionable personality traits"),
    "backstory": _bullets("summarizing the character's key backstory elements"),
    "equipment": _bullets("listing the character's notable equipment"),
}

SHARED_FIELDS: Tuple[str, ...] = tuple(SHARED_PROPERTIES.keys())

_ABILITIES = ("strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma")

_ATTACK = _object({"name": _string(), "bonus": _string(), "damage": _string()})


def _ability_block() -> Dict[str, Any]:
    return _object({a: _integer() for a in _ABILITIES})


def _compose(system_properties: Dict[str, Any]) -> Contract:
    # shared fields first so every contract opens with the same structure
    properties = copy.deepcopy(SHARED_PROPERTIES)
    properties.update(system_properties)
    return _object(properties)


_DND5E = _compose(
    {
        "race": _string(),
        "class": _string(),
        "background": _string(),
        "alignment": _string(),
        "hitPoints": _integer("Character's total hit points at level 1."),
        "armorClass": _integer("Character's armor class."),
        "speed": _string("Character's speed, e.g., '30 ft'."),
        "stats": _ability_block(),
        "skills": _array(_string(), "List of skills the character is proficient in."),
        "proficiencies": _object(
            {
                "weapons": _array(_string()),
                "armor": _array(_string()),
                "tools": _array(_string()),
            }
        ),
        "attacks": _array(_ATTACK),
    }
)

_PF2E = _compose(
    {
        "ancestry": _string(),
        "heritage": _string(),
        "background": _string(),
        "class": _string(),
        "alignment": _string(),
        "hitPoints": _integer("Character's total hit points at level 1."),
        "armorClass": _integer("Character's armor class."),
        "speed": _string("Character's speed, e.g., '25 ft'."),
        "attributes": _ability_block(),
        "skills": _array(_object({"name": _string(), "rank": _string("e.g., Trained, Expert")})),
        "attacks": _array(_ATTACK),
    }
)

_BLADES = _compose(
    {
        "playbook": _string(),
        "heritage": _string(),
        "background": _string(),
        "vice": _string("The character's vice, e.g., 'Gambling' or 'Luxury'."),
        "purveyor": _string("The character's preferred purveyor for their vice."),
        "aliases": _array(_string()),
        "drives": _bullets("describing the character's core motivations, goals, or methods"),
        "attributes": _object({"insight": _integer(), "prowess": _integer(), "resolve": _integer()}),
        "actionRatings": _array(
            _object(
                {
                    "action": _string("The name of the action, e.g., Hunt, Study, Prowl."),
                    "rating": _integer("The rating for the action, from 0 to 4."),
                }
            ),
            "A list of the character's action ratings.",
        ),
        "specialAbilities": _array(_string()),
        "friends": _array(_string()),
        "gear": _array(_object({"name": _string(), "load": _integer()}), "Character's standard gear items."),
        "harm": _object(
            {
                "level3": _string("Description of Level 3 Harm taken. Empty string if none."),
                "level2": _string("Description of Level 2 Harm taken. Empty string if none."),
                "level1": _string("Description of Level 1 Harm taken. Empty string if none."),
            }
        ),
    }
)

# (full display name used in instructions, short label used in documents, contract)
_REGISTRY: Dict[GameSystem, Tuple[str, str, Contract]] = {
    GameSystem.DND5E: ("Dungeons & Dragons 5th Edition", "D&D 5e", _DND5E),
    GameSystem.PF2E: ("Pathfinder 2nd Edition", "Pathfinder 2e", _PF2E),
    GameSystem.BLADES: ("Blades in the Dark", "Blades in the Dark", _BLADES),
}

_missing = [s for s in GameSystem if s not in _REGISTRY]
if _missing:
    raise RuntimeError(f"systems without a contract: {_missing}")


def coerce_system(value: Any) -> GameSystem:
    if isinstance(value, GameSystem):
        return value
    try:
        return GameSystem(str(value))
    except ValueError:
        raise UnsupportedSystemError(f"unsupported game system: {value!r}", details={"system": str(value)})


def _entry(system: Any) -> Tuple[str, str, Contract]:
    s = coerce_system(system)
    try:
        return _REGISTRY[s]
    except KeyError:
        raise UnsupportedSystemError(f"unsupported game system: {s.value!r}", details={"system": s.value})


def schema_for(system: Any) -> Tuple[str, Contract]:
    """Return (display name, contract) for a system; the contract is a fresh copy."""
    name, _label, contract = _entry(system)
    return name, copy.deepcopy(contract)


def with_npcs_contract(system: Any) -> Contract:
    """Combined contract for one main character plus related NPCs of the same system."""
    _name, contract = schema_for(system)
    return _object(
        {
            "character": contract,
            "npcs": _array(copy.deepcopy(contract), "Array of NPCs related to the main character"),
        }
    )


def display_name(system: Any) -> str:
    return _entry(system)[0]


def short_label(system: Any) -> str:
    return _entry(system)[1]


def list_systems() -> List[Dict[str, str]]:
    return [{"id": s.value, "label": label, "name": name} for s, (name, label, _c) in _REGISTRY.items()]
