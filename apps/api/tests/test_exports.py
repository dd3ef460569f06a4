import pytest

from charforge.core.errors import ValidationError
from charforge.modules.characters.systems import GameSystem
from charforge.modules.exports.service import (
    export_filename,
    read_frontmatter,
    render_markdown,
    sanitize_filename,
)

from conftest import make_sheet


@pytest.mark.parametrize(
    "system,updates,expected",
    [
        (
            GameSystem.DND5E,
            {"name": 'Vex: "the Knife"', "race": "Tiefling", "class": "Rogue", "alignment": "Chaotic Good"},
            {"system": "D&D 5e", "race": "Tiefling", "class": "Rogue", "alignment": "Chaotic Good"},
        ),
        (
            GameSystem.PF2E,
            {"name": "Nix", "ancestry": "Goblin", "heritage": "Razortooth", "class": "Witch"},
            {"system": "Pathfinder 2e", "ancestry": "Goblin", "heritage": "Razortooth", "class": "Witch"},
        ),
        (
            GameSystem.BLADES,
            {"name": "Shade", "playbook": "Lurk", "heritage": "Akoros", "vice": "Gambling"},
            {"system": "Blades in the Dark", "playbook": "Lurk", "heritage": "Akoros", "vice": "Gambling"},
        ),
    ],
)
def test_frontmatter_round_trips_identifying_fields(store, system, updates, expected):
    rec = store.create(system, "p", make_sheet(system, **updates))
    fm = read_frontmatter(render_markdown(rec))
    assert fm["title"] == updates["name"]
    assert fm["id"] == rec.id
    for k, v in expected.items():
        assert fm[k] == v


def test_list_fields_keep_stored_order(store):
    rec = store.create(GameSystem.DND5E, "p", make_sheet(GameSystem.DND5E, backstory=["zeta", "alpha", "mu"]))
    doc = render_markdown(rec)
    section = doc.split("## Backstory\n", 1)[1].split("\n\n", 1)[0]
    assert section.splitlines() == ["- zeta", "- alpha", "- mu"]


def test_empty_harm_levels_render_a_placeholder(store):
    rec = store.create(GameSystem.BLADES, "p", make_sheet(GameSystem.BLADES))
    lines = render_markdown(rec).splitlines()
    assert "- **Level 3:**  " in lines
    assert "- **Level 2:**  " in lines
    assert "- **Level 1:**  " in lines


def test_blades_gear_and_ratings_sections(store):
    sheet = make_sheet(
        GameSystem.BLADES,
        gear=[{"name": "Fine lockpicks", "load": 0}, {"name": "Climbing gear", "load": 2}],
        actionRatings=[{"action": "Prowl", "rating": 2}],
    )
    doc = render_markdown(store.create(GameSystem.BLADES, "p", sheet))
    assert "- Fine lockpicks (Load 0)\n- Climbing gear (Load 2)" in doc
    assert "- **Prowl:** 2" in doc


def test_empty_list_keeps_its_section(store):
    rec = store.create(GameSystem.PF2E, "p", make_sheet(GameSystem.PF2E, equipment=[]))
    doc = render_markdown(rec)
    assert "## Equipment\n-  \n" in doc


def test_rendering_is_deterministic(store):
    rec = store.create(GameSystem.DND5E, "p", make_sheet(GameSystem.DND5E))
    assert render_markdown(rec) == render_markdown(store.require(rec.id))


def test_filenames_are_sanitized(store):
    assert sanitize_filename("Sir Brave-Heart!") == "sir_brave_heart_"
    assert sanitize_filename("") == "character"
    rec = store.create(GameSystem.DND5E, "p", make_sheet(GameSystem.DND5E, name="Aldric the Red"))
    assert export_filename(rec) == "aldric_the_red.md"


def test_document_without_frontmatter_is_rejected():
    with pytest.raises(ValidationError):
        read_frontmatter("# just a heading\n")
