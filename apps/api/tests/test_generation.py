import asyncio
import json

import pytest

from charforge.core.errors import GenerationServiceError, MalformedResponseError, ValidationError
from charforge.modules.characters.systems import GameSystem
from charforge.modules.generation.cache import GenerationCache
from charforge.modules.generation.providers import MockProvider
from charforge.modules.generation.service import (
    DEFAULT_SUGGESTIONS,
    CharacterGenerator,
    generate_and_store,
    generate_npc_and_store,
    npc_prompt_for,
)
from charforge.modules.portraits.service import PortraitService

from conftest import FakeProvider, image_transport, make_sheet, sheet_data


def _reply(system, **updates):
    return json.dumps(sheet_data(system, **updates))


def test_empty_prompt_fails_before_any_call():
    provider = FakeProvider(_reply(GameSystem.DND5E))
    gen = CharacterGenerator(provider)
    with pytest.raises(ValidationError):
        asyncio.run(gen.generate(GameSystem.DND5E, "   "))
    assert provider.calls == []


def test_unknown_system_fails_before_any_call():
    provider = FakeProvider(_reply(GameSystem.DND5E))
    gen = CharacterGenerator(provider)
    with pytest.raises(ValidationError):
        asyncio.run(gen.generate("gurps", "a knight"))
    assert provider.calls == []


def test_generate_returns_validated_sheet_and_sends_contract():
    provider = FakeProvider(_reply(GameSystem.PF2E, name="Nix"))
    gen = CharacterGenerator(provider)
    result = asyncio.run(gen.generate(GameSystem.PF2E, "goblin witch"))
    assert result.system is GameSystem.PF2E
    assert result.character.name == "Nix"
    assert result.npcs == []
    call = provider.calls[0]
    assert "Pathfinder 2nd Edition" in call["system_instruction"]
    assert '"goblin witch"' in call["prompt"]
    assert "ancestry" in call["schema"]["properties"]


def test_invalid_json_is_malformed_and_nothing_is_stored(store):
    gen = CharacterGenerator(FakeProvider("this is not json"))
    with pytest.raises(MalformedResponseError):
        asyncio.run(generate_and_store(gen, store, GameSystem.DND5E, "a knight"))
    assert store.count() == 0


def test_wrong_shape_is_malformed():
    gen = CharacterGenerator(FakeProvider(_reply(GameSystem.BLADES)))
    with pytest.raises(MalformedResponseError):
        asyncio.run(gen.generate(GameSystem.DND5E, "a knight"))


def test_timeout_becomes_generation_service_error():
    gen = CharacterGenerator(FakeProvider(_reply(GameSystem.DND5E), delay=1.0), timeout_s=0.01)
    with pytest.raises(GenerationServiceError):
        asyncio.run(gen.generate(GameSystem.DND5E, "a knight"))


def test_provider_failure_becomes_generation_service_error():
    gen = CharacterGenerator(FakeProvider(error=RuntimeError("connection reset")))
    with pytest.raises(GenerationServiceError):
        asyncio.run(gen.generate(GameSystem.DND5E, "a knight"))


def test_short_bullet_lists_are_accepted():
    reply = _reply(GameSystem.DND5E, personality=["grim"], backstory=[])
    gen = CharacterGenerator(FakeProvider(reply))
    result = asyncio.run(gen.generate(GameSystem.DND5E, "a knight"))
    assert result.character.personality == ["grim"]


def test_cache_hit_skips_the_provider_until_cleared():
    provider = FakeProvider(_reply(GameSystem.DND5E))
    gen = CharacterGenerator(provider, cache=GenerationCache())
    first = asyncio.run(gen.generate(GameSystem.DND5E, "a knight"))
    second = asyncio.run(gen.generate(GameSystem.DND5E, "a knight"))
    assert first.character == second.character
    assert len(provider.calls) == 1
    assert gen.clear_cache() == 1
    asyncio.run(gen.generate(GameSystem.DND5E, "a knight"))
    assert len(provider.calls) == 2


def test_failures_are_not_cached():
    provider = FakeProvider("{", _reply(GameSystem.DND5E))
    gen = CharacterGenerator(provider, cache=GenerationCache())
    with pytest.raises(MalformedResponseError):
        asyncio.run(gen.generate(GameSystem.DND5E, "a knight"))
    asyncio.run(gen.generate(GameSystem.DND5E, "a knight"))
    assert len(provider.calls) == 2


@pytest.mark.parametrize("count", [0, 1, 2, 3])
def test_npcs_are_truncated_to_count(count):
    gen = CharacterGenerator(MockProvider(), cache=GenerationCache())
    result = asyncio.run(gen.generate(GameSystem.BLADES, "a lurk", include_npcs=True, npc_count=count))
    assert len(result.npcs) == count


@pytest.mark.parametrize("count", [-1, 4])
def test_npc_count_out_of_range_is_rejected(count):
    provider = MockProvider()
    gen = CharacterGenerator(provider)
    with pytest.raises(ValidationError):
        asyncio.run(gen.generate(GameSystem.DND5E, "a knight", include_npcs=True, npc_count=count))
    assert provider.calls == []


def test_combined_reply_without_npcs_list_is_malformed():
    reply = json.dumps({"character": sheet_data(GameSystem.DND5E)})
    gen = CharacterGenerator(FakeProvider(reply))
    with pytest.raises(MalformedResponseError):
        asyncio.run(gen.generate(GameSystem.DND5E, "a knight", include_npcs=True, npc_count=2))


def test_generate_and_store_persists_main_and_npcs(store):
    gen = CharacterGenerator(MockProvider())
    out = asyncio.run(
        generate_and_store(gen, store, GameSystem.PF2E, "an automaton champion", include_npcs=True, npc_count=2)
    )
    assert out.character.is_npc is False
    assert out.character.prompt == "an automaton champion"
    assert [n.is_npc for n in out.npcs] == [True, True]
    assert {n.prompt for n in out.npcs} == {"NPC related to: an automaton champion"}
    assert store.count() == 3
    assert store.first_non_npc().id == out.character.id


def test_portrait_failure_does_not_fail_generation(store, tmp_path):
    portraits = PortraitService(storage_root=str(tmp_path / "storage"), transport=image_transport(status=503))
    gen = CharacterGenerator(MockProvider())
    out = asyncio.run(
        generate_and_store(gen, store, GameSystem.DND5E, "a knight", portraits=portraits, with_portrait=True)
    )
    assert out.portrait_ref is None
    assert store.require(out.character.id).portrait_ref is None


def test_portrait_is_saved_under_storage(store, tmp_path):
    portraits = PortraitService(storage_root=str(tmp_path / "storage"), transport=image_transport())
    gen = CharacterGenerator(MockProvider())
    out = asyncio.run(
        generate_and_store(gen, store, GameSystem.DND5E, "a knight", portraits=portraits, with_portrait=True)
    )
    assert out.portrait_ref.startswith("storage://portraits/")
    assert portraits.path_for(out.portrait_ref).read_bytes() == b"\xff\xd8fakejpeg"
    assert store.require(out.character.id).portrait_ref == out.portrait_ref


def test_text_failure_wins_over_portrait_success(store, portraits):
    gen = CharacterGenerator(FakeProvider("nope"))
    with pytest.raises(MalformedResponseError):
        asyncio.run(generate_and_store(gen, store, GameSystem.DND5E, "a knight", portraits=portraits, with_portrait=True))
    assert store.count() == 0


def test_npc_prompt_uses_parent_backstory_and_relationship(store):
    parent = store.create(
        GameSystem.DND5E, "p", make_sheet(GameSystem.DND5E, backstory=["Raised by wolves", "Exiled from court"])
    )
    prompt = npc_prompt_for(parent, "a bitter rival")
    assert "Raised by wolves Exiled from court" in prompt
    assert "a bitter rival" in prompt
    assert "D&D 5e" in prompt


def test_generate_npc_and_store_links_to_parent_system(store):
    parent = store.create(GameSystem.BLADES, "p", make_sheet(GameSystem.BLADES))
    gen = CharacterGenerator(MockProvider())
    npc = asyncio.run(generate_npc_and_store(gen, store, parent, "a mentor"))
    assert npc.system is GameSystem.BLADES
    assert npc.is_npc is True
    assert "a mentor" in npc.prompt


def test_suggestions_fall_back_to_defaults_on_bad_reply():
    gen = CharacterGenerator(FakeProvider('{"not": "a list"}'), cache=GenerationCache())
    assert asyncio.run(gen.suggest_concepts(GameSystem.PF2E)) == DEFAULT_SUGGESTIONS[GameSystem.PF2E]


def test_suggestions_are_cached_and_refreshable():
    provider = FakeProvider(json.dumps(["A", "B"]), json.dumps(["C"]))
    gen = CharacterGenerator(provider, cache=GenerationCache())
    assert asyncio.run(gen.suggest_concepts(GameSystem.DND5E)) == ["A", "B"]
    assert asyncio.run(gen.suggest_concepts(GameSystem.DND5E)) == ["A", "B"]
    assert gen.refresh_suggestions(GameSystem.DND5E) is True
    assert asyncio.run(gen.suggest_concepts(GameSystem.DND5E)) == ["C"]
    assert len(provider.calls) == 2


def test_half_orc_scenario_end_to_end(store):
    gen = CharacterGenerator(MockProvider())
    out = asyncio.run(
        generate_and_store(gen, store, GameSystem.DND5E, "A stoic half-orc barbarian who is afraid of the dark")
    )
    sheet = out.character.character
    assert sheet.name and sheet.race and sheet.class_name
    stats = sheet.stats.model_dump()
    assert set(stats) == {"strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma"}
    assert all(isinstance(v, int) for v in stats.values())
    assert store.get_by_npc_status(False)[0] == out.character


def test_npc_for_parent_skips_the_cache(store):
    parent = store.create(GameSystem.DND5E, "p", make_sheet(GameSystem.DND5E))
    provider = FakeProvider(_reply(GameSystem.DND5E, name="First"), _reply(GameSystem.DND5E, name="Second"))
    gen = CharacterGenerator(provider, cache=GenerationCache())
    a = asyncio.run(generate_npc_and_store(gen, store, parent, "a rival"))
    b = asyncio.run(generate_npc_and_store(gen, store, parent, "a rival"))
    assert len(provider.calls) == 2
    assert (a.name, b.name) == ("First", "Second")
    assert a.id != b.id
