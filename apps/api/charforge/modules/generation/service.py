from __future__ import annotations

import asyncio
import json
import random
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from charforge.core.errors import (
    CharForgeError,
    GenerationServiceError,
    MalformedResponseError,
    ValidationError,
)
from charforge.core.observability import emit
from charforge.modules.characters.schemas import CharacterSheet, StoredCharacter, parse_character
from charforge.modules.characters.service import CharacterStore
from charforge.modules.characters.systems import (
    GameSystem,
    display_name,
    schema_for,
    short_label,
    with_npcs_contract,
)

from .cache import KIND_CHARACTER, KIND_SUGGESTIONS, KIND_WITH_NPCS, CacheKey, GenerationCache
from .providers.base import TextGenerationProvider
from .schemas import MAX_NPCS, GenerationResult, StoredGeneration

DEFAULT_TIMEOUT_S = 60.0

ADVISORY_MIN = 3
ADVISORY_MAX = 5

RELATIONSHIPS = (
    "a sibling",
    "a childhood friend",
    "a bitter rival",
    "a mentor",
    "a former lover",
    "a sworn enemy",
    "a long-lost parent",
)

DEFAULT_SUGGESTIONS: Dict[GameSystem, List[str]] = {
    GameSystem.DND5E: [
        "A stoic half-orc barbarian who is afraid of the dark",
        "A cunning tiefling rogue with a heart of gold",
        "A grizzled dwarven cleric who has lost their faith",
        "An elven wizard obsessed with forbidden knowledge",
        "A charismatic human bard who is secretly a spy",
    ],
    GameSystem.PF2E: [
        "A Leshy druid who wants to see the world beyond their forest",
        "An automaton champion searching for their creator's purpose",
        "A goblin witch who speaks to an unusually intelligent toad",
        "A human gunslinger seeking revenge on a notorious outlaw",
        "An elf magus who blends swordplay and arcane might seamlessly",
    ],
    GameSystem.BLADES: [
        "A Cutter who uses their imposing presence to settle scores in the Crows Foot district",
        "A Leech, the only doctor in Silkshore who will patch up scoundrels, for a price",
        "A Lurk who can navigate the rooftops of Duskvol like a ghost",
        "A Slide whose silver tongue has gotten them into and out of trouble with every noble house",
        "A Spider, weaving a web of contacts and secrets from a hidden lair in Charterhall",
    ],
}


def require_system(value: Any) -> GameSystem:
    """Caller-facing system check: an unknown tag is bad input, not a data bug."""
    if isinstance(value, GameSystem):
        return value
    try:
        return GameSystem(str(value))
    except ValueError:
        raise ValidationError(
            f"unknown game system: {value!r}",
            details={"system": str(value), "allowed": [s.value for s in GameSystem]},
        )


def require_prompt(prompt: Any) -> str:
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("Please enter a character concept.", details={"field": "prompt"})
    return prompt.strip()


def character_instruction(system: GameSystem) -> str:
    name = display_name(system)
    return (
        f"You are an expert TTRPG creator specializing in {name}. Your goal is to generate a rich, "
        "thematic, and mechanically sound level 1 character based on a user prompt. Adhere strictly "
        "to the provided JSON schema. For personality, backstory, and appearance fields, provide 3-5 "
        "distinct, actionable bullet points."
    )


def character_prompt(system: GameSystem, concept: str) -> str:
    name = display_name(system)
    return (
        f'Based on the following concept: "{concept}", generate a complete level 1 character for the '
        f"{name} roleplaying game. Fill out all the fields in the JSON schema with creative and "
        "appropriate details."
    )


def npcs_instruction(system: GameSystem, npc_count: int) -> str:
    name = display_name(system)
    return (
        f"You are an expert TTRPG creator specializing in {name}. Generate a main character and up to "
        f"{npc_count} related NPCs based on the user's concept. The NPCs should connect directly to the "
        "main character's backstory, creating interesting plot hooks. Adhere strictly to the provided "
        "JSON schema."
    )


def npcs_prompt(system: GameSystem, concept: str, npc_count: int) -> str:
    name = display_name(system)
    return (
        f'Based on the following concept: "{concept}", generate a complete level 1 character along with '
        f"1-{npc_count} related NPCs for the {name} roleplaying game. The NPCs should connect directly "
        "to the main character's backstory, creating interesting plot hooks. Fill out all the fields "
        "in the JSON schema with creative and appropriate details."
    )


def npc_prompt_for(parent: StoredCharacter, relationship: Optional[str] = None, rng: Optional[random.Random] = None) -> str:
    """Prompt for an NPC tied to an existing character's backstory."""
    rel = (relationship or "").strip() or (rng or random).choice(RELATIONSHIPS)
    backstory = " ".join(parent.character.backstory) or "a mysterious past"
    return (
        f'Based on the backstory of an existing character ("{backstory}"), generate a complete level 1 '
        f"NPC who is {rel} to them. The NPC is for the {short_label(parent.system)} roleplaying game. "
        "Make the NPC's own story and personality connect directly to the original character's "
        "backstory, creating interesting plot hooks."
    )


def _advisory_fields(contract: Dict[str, Any]) -> List[str]:
    props = contract.get("properties") or {}
    return [k for k, v in props.items() if "3-5" in str(v.get("description", ""))]


class CharacterGenerator:
    """
    Turns (system, concept) into validated character sheets.

    One outbound call per invocation, bounded by timeout_s. Never touches the
    store; see generate_and_store for the composed flow.
    """

    def __init__(
        self,
        provider: TextGenerationProvider,
        *,
        cache: Optional[GenerationCache] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.timeout_s = timeout_s

    async def _call(self, *, system_instruction: Optional[str], prompt: str, schema: Dict[str, Any]) -> str:
        name = getattr(self.provider, "name", "unknown")
        emit("info", "generation.request", prompt[:120], module=__name__, provider=name)
        try:
            return await asyncio.wait_for(
                self.provider.generate_json(
                    system_instruction=system_instruction,
                    prompt=prompt,
                    response_schema=schema,
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            emit("error", "generation.failed", "timeout", module=__name__, provider=name, timeout_s=self.timeout_s)
            raise GenerationServiceError(
                f"generation timed out after {self.timeout_s}s",
                details={"provider": name, "timeout_s": self.timeout_s},
            ) from e
        except CharForgeError:
            emit("error", "generation.failed", "provider error", module=__name__, provider=name)
            raise
        except Exception as e:
            emit("error", "generation.failed", str(e), module=__name__, provider=name, type=type(e).__name__)
            raise GenerationServiceError(
                "generation service failed",
                details={"provider": name, "type": type(e).__name__},
            ) from e

    @staticmethod
    def _load_json(text: str) -> Any:
        try:
            return json.loads((text or "").strip())
        except (TypeError, ValueError) as e:
            emit("error", "generation.failed", "payload is not JSON", module=__name__, payload=(text or "")[:500])
            raise MalformedResponseError(
                "Received an invalid format from the API.",
                details={"reason": "not_json"},
            ) from e

    @staticmethod
    def _sheet(system: GameSystem, data: Any, where: str) -> CharacterSheet:
        try:
            return parse_character(system, data)
        except PydanticValidationError as e:
            emit("error", "generation.failed", f"{where} does not match contract", module=__name__, system=system.value)
            raise MalformedResponseError(
                "Received an invalid format from the API.",
                details={
                    "reason": "schema_mismatch",
                    "where": where,
                    "errors": [{"loc": list(x.get("loc", ())), "msg": x.get("msg", "")} for x in e.errors()],
                },
            ) from e

    @staticmethod
    def _advise(system: GameSystem, sheet: CharacterSheet, contract: Dict[str, Any]) -> None:
        # 3-5 entries is an instruction to the model, not an invariant
        data = sheet.model_dump(by_alias=True)
        for f in _advisory_fields(contract):
            n = len(data.get(f) or [])
            if n < ADVISORY_MIN or n > ADVISORY_MAX:
                emit(
                    "warning",
                    "generation.list_length_advisory",
                    f"{f} has {n} entries",
                    module=__name__,
                    system=system.value,
                    field=f,
                    count=n,
                )

    async def _fresh_character(self, s: GameSystem, concept: str) -> CharacterSheet:
        _name, contract = schema_for(s)
        text = await self._call(
            system_instruction=character_instruction(s),
            prompt=character_prompt(s, concept),
            schema=contract,
        )
        sheet = self._sheet(s, self._load_json(text), "character")
        self._advise(s, sheet, contract)
        return sheet

    async def generate_character(self, system: Any, prompt: str) -> CharacterSheet:
        s = require_system(system)
        concept = require_prompt(prompt)
        key = CacheKey(KIND_CHARACTER, s, concept, False)
        if self.cache is not None:
            hit = self.cache.get(key)
            if hit is not None:
                emit("info", "generation.cache_hit", concept[:120], module=__name__, system=s.value)
                return hit

        sheet = await self._fresh_character(s, concept)
        if self.cache is not None:
            self.cache.put(key, sheet)
        return sheet

    async def generate_with_npcs(self, system: Any, prompt: str, npc_count: int = 1) -> GenerationResult:
        s = require_system(system)
        concept = require_prompt(prompt)
        if not isinstance(npc_count, int) or npc_count < 0 or npc_count > MAX_NPCS:
            raise ValidationError(f"npc_count must be between 0 and {MAX_NPCS}", details={"npc_count": npc_count})

        key = CacheKey(KIND_WITH_NPCS, s, concept, True)
        result: Optional[GenerationResult] = self.cache.get(key) if self.cache is not None else None
        if result is not None:
            emit("info", "generation.cache_hit", concept[:120], module=__name__, system=s.value, npcs=True)
        else:
            _name, contract = schema_for(s)
            text = await self._call(
                system_instruction=npcs_instruction(s, MAX_NPCS),
                prompt=npcs_prompt(s, concept, MAX_NPCS),
                schema=with_npcs_contract(s),
            )
            data = self._load_json(text)
            if not isinstance(data, dict) or "character" not in data or not isinstance(data.get("npcs"), list):
                raise MalformedResponseError(
                    "Received an invalid format from the API.",
                    details={"reason": "schema_mismatch", "where": "root"},
                )
            main = self._sheet(s, data["character"], "character")
            npcs = [self._sheet(s, n, f"npcs[{i}]") for i, n in enumerate(data["npcs"])]
            self._advise(s, main, contract)
            for n in npcs:
                self._advise(s, n, contract)
            result = GenerationResult(system=s, character=main, npcs=npcs)
            if self.cache is not None:
                self.cache.put(key, result)

        return GenerationResult(system=s, character=result.character, npcs=result.npcs[:npc_count])

    async def generate(
        self,
        system: Any,
        prompt: str,
        *,
        include_npcs: bool = False,
        npc_count: int = 1,
    ) -> GenerationResult:
        if include_npcs:
            return await self.generate_with_npcs(system, prompt, npc_count)
        s = require_system(system)
        return GenerationResult(system=s, character=await self.generate_character(s, prompt))

    async def generate_npc_for(self, parent: StoredCharacter, relationship: Optional[str] = None) -> Tuple[str, CharacterSheet]:
        # uncached; every call stores a new NPC
        prompt = npc_prompt_for(parent, relationship)
        return prompt, await self._fresh_character(parent.system, prompt)

    async def suggest_concepts(self, system: Any) -> List[str]:
        """Ten short character concepts; falls back to built-in ones if the reply is unusable."""
        s = require_system(system)
        key = CacheKey(KIND_SUGGESTIONS, s)
        if self.cache is not None:
            hit = self.cache.get(key)
            if hit is not None:
                return hit

        text = await self._call(
            system_instruction=None,
            prompt=(
                f"Generate 10 creative character concept prompts for {display_name(s)}. Each prompt should be "
                "a few words to a short sentence describing an interesting character concept. Return as an "
                "array of strings."
            ),
            schema={"type": "ARRAY", "items": {"type": "STRING"}},
        )
        try:
            data = json.loads((text or "").strip())
        except (TypeError, ValueError):
            data = None
        if not isinstance(data, list) or not data or not all(isinstance(x, str) for x in data):
            emit("warning", "generation.suggestions_fallback", "using default suggestions", module=__name__, system=s.value)
            return list(DEFAULT_SUGGESTIONS[s])

        if self.cache is not None:
            self.cache.put(key, data)
        return data

    def refresh_suggestions(self, system: Any) -> bool:
        if self.cache is None:
            return False
        return self.cache.invalidate(CacheKey(KIND_SUGGESTIONS, require_system(system)))

    def clear_cache(self) -> int:
        return self.cache.clear() if self.cache is not None else 0


async def generate_and_store(
    generator: CharacterGenerator,
    store: CharacterStore,
    system: Any,
    prompt: str,
    *,
    include_npcs: bool = False,
    npc_count: int = 1,
    portraits: Any = None,
    with_portrait: bool = False,
) -> StoredGeneration:
    """
    Generate, then persist. Nothing is written unless generation succeeded.

    A portrait (when asked for) is fetched concurrently with the text call and
    is best-effort: its failure never fails or cancels the character.
    """
    s = require_system(system)
    concept = require_prompt(prompt)

    text_task = generator.generate(s, concept, include_npcs=include_npcs, npc_count=npc_count)
    image = None
    if with_portrait and portraits is not None:
        result, image = await asyncio.gather(text_task, portraits.fetch(s, concept), return_exceptions=True)
        if isinstance(image, BaseException):
            emit("warning", "portrait.skipped", str(image), module=__name__, type=type(image).__name__)
            image = None
        if isinstance(result, BaseException):
            raise result
    else:
        result = await text_task

    portrait_ref = None
    if image:
        portrait_ref = await run_in_threadpool(portraits.save, image)

    main = await run_in_threadpool(store.create, s, concept, result.character, False, portrait_ref=portrait_ref)
    npcs: List[StoredCharacter] = []
    for npc in result.npcs:
        npcs.append(await run_in_threadpool(store.create, s, f"NPC related to: {concept}", npc, True))
    return StoredGeneration(character=main, npcs=npcs, portrait_ref=portrait_ref)


async def generate_npc_and_store(
    generator: CharacterGenerator,
    store: CharacterStore,
    parent: StoredCharacter,
    relationship: Optional[str] = None,
) -> StoredCharacter:
    prompt, sheet = await generator.generate_npc_for(parent, relationship)
    return await run_in_threadpool(store.create, parent.system, prompt, sheet, True)

