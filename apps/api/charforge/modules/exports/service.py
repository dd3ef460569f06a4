"""
Markdown export of stored characters.

Every document is YAML frontmatter (title, system label, the identifying
fields of that system, id) followed by a fixed per-system layout. List fields
render one bullet per entry in stored order; an empty value renders as a
single blank placeholder so the layout never shifts.
"""
from __future__ import annotations

import re
from typing import Any, Callable, Dict, Iterable, List

import yaml

from charforge.core.errors import UnsupportedSystemError, ValidationError
from charforge.modules.characters.schemas import (
    BladesCharacter,
    DndCharacter,
    Pf2eCharacter,
    StoredCharacter,
)
from charforge.modules.characters.systems import GameSystem, short_label

BLANK = " "

_FRONTMATTER_RE = re.compile(r"\A---\n(.*?)\n---\n", re.DOTALL)


def sanitize_filename(name: str) -> str:
    cleaned = re.sub(r"[^a-z0-9]", "_", (name or "").lower())
    return cleaned or "character"


def export_filename(stored: StoredCharacter) -> str:
    return f"{sanitize_filename(stored.name)}.md"


def _text(v: Any) -> str:
    s = "" if v is None else str(v)
    return s if s.strip() else BLANK


def _bullets(items: Iterable[Any]) -> str:
    lines = [f"- {_text(x)}" for x in items]
    return "\n".join(lines) if lines else f"- {BLANK}"


def _joined(items: Iterable[Any]) -> str:
    return _text(", ".join(str(x) for x in items))


def _frontmatter(fields: Dict[str, Any]) -> str:
    body = yaml.safe_dump(fields, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{body}---\n"


def _six_scores(scores: Any) -> List[str]:
    return [
        "| STR | DEX | CON | INT | WIS | CHA |",
        "|:---:|:---:|:---:|:---:|:---:|:---:|",
        f"| {scores.strength} | {scores.dexterity} | {scores.constitution} "
        f"| {scores.intelligence} | {scores.wisdom} | {scores.charisma} |",
    ]


def _vitals(armor_class: int, hit_points: int, speed: str) -> List[str]:
    return [
        "## Vitals",
        "| Armor Class | Hit Points | Speed |",
        "|:-----------:|:----------:|:-----:|",
        f"| {armor_class} | {hit_points} | {_text(speed)} |",
    ]


def _attacks(attacks: Iterable[Any]) -> str:
    return _bullets(f"**{a.name}:** {a.bonus} to hit, {a.damage}." for a in attacks)


def _shared_tail(c: Any) -> List[str]:
    return [
        "## Appearance",
        _bullets(c.appearance),
        "",
        "## Personality",
        _bullets(c.personality),
        "",
        "## Backstory",
        _bullets(c.backstory),
        "",
        "## Equipment",
        _bullets(c.equipment),
    ]


def _render_dnd(stored: StoredCharacter, c: DndCharacter) -> str:
    fm = _frontmatter(
        {
            "title": c.name,
            "system": short_label(GameSystem.DND5E),
            "race": c.race,
            "class": c.class_name,
            "background": c.background,
            "alignment": c.alignment,
            "id": stored.id,
        }
    )
    lines = [
        f"# {c.name}",
        f"*{c.alignment} {c.race} {c.class_name}*",
        "",
        *_vitals(c.armor_class, c.hit_points, c.speed),
        "",
        "## Ability Scores",
        *_six_scores(c.stats),
        "",
        "## Skills & Proficiencies",
        f"**Skills:** {_joined(c.skills)}",
        "",
        f"**Armor:** {_joined(c.proficiencies.armor)}",
        f"**Weapons:** {_joined(c.proficiencies.weapons)}",
        f"**Tools:** {_joined(c.proficiencies.tools)}",
        "",
        "## Attacks",
        _attacks(c.attacks),
        "",
        *_shared_tail(c),
    ]
    return fm + "\n" + "\n".join(lines) + "\n"


def _render_pf2e(stored: StoredCharacter, c: Pf2eCharacter) -> str:
    fm = _frontmatter(
        {
            "title": c.name,
            "system": short_label(GameSystem.PF2E),
            "ancestry": c.ancestry,
            "heritage": c.heritage,
            "class": c.class_name,
            "background": c.background,
            "alignment": c.alignment,
            "id": stored.id,
        }
    )
    lines = [
        f"# {c.name}",
        f"*{c.alignment} {c.ancestry} {c.class_name}*",
        "",
        *_vitals(c.armor_class, c.hit_points, c.speed),
        "",
        "## Attributes",
        *_six_scores(c.attributes),
        "",
        "## Skills",
        _bullets(f"{s.name} ({s.rank})" for s in c.skills),
        "",
        "## Attacks",
        _attacks(c.attacks),
        "",
        *_shared_tail(c),
    ]
    return fm + "\n" + "\n".join(lines) + "\n"


def _render_blades(stored: StoredCharacter, c: BladesCharacter) -> str:
    fm = _frontmatter(
        {
            "title": c.name,
            "system": short_label(GameSystem.BLADES),
            "playbook": c.playbook,
            "heritage": c.heritage,
            "background": c.background,
            "vice": c.vice,
            "id": stored.id,
        }
    )
    lines = [
        f"# {c.name}",
        f"*A {c.heritage} {c.playbook} from a {c.background} background.*",
        "",
        f"**Vice:** {_text(c.vice)} (Purveyor: {_text(c.purveyor)})",
        f"**Aliases:** {_joined(c.aliases)}",
        "",
        "## Attributes",
        "| Insight | Prowess | Resolve |",
        "|:-------:|:-------:|:-------:|",
        f"| {c.attributes.insight} | {c.attributes.prowess} | {c.attributes.resolve} |",
        "",
        "## Action Ratings",
        _bullets(f"**{a.action}:** {a.rating}" for a in c.action_ratings),
        "",
        "## Appearance",
        _bullets(c.appearance),
        "",
        "## Personality",
        _bullets(c.personality),
        "",
        "## Backstory",
        _bullets(c.backstory),
        "",
        "## Drives",
        _bullets(c.drives),
        "",
        "## Special Abilities",
        _bullets(c.special_abilities),
        "",
        "## Friends / Rivals",
        _bullets(c.friends),
        "",
        "## Equipment",
        _bullets(c.equipment),
        "",
        "## Gear",
        _bullets(f"{g.name} (Load {g.load})" for g in c.gear),
        "",
        "## Harm",
        f"- **Level 3:** {_text(c.harm.level3)}",
        f"- **Level 2:** {_text(c.harm.level2)}",
        f"- **Level 1:** {_text(c.harm.level1)}",
    ]
    return fm + "\n" + "\n".join(lines) + "\n"


_RENDERERS: Dict[GameSystem, Callable[[StoredCharacter, Any], str]] = {
    GameSystem.DND5E: _render_dnd,
    GameSystem.PF2E: _render_pf2e,
    GameSystem.BLADES: _render_blades,
}


def render_markdown(stored: StoredCharacter) -> str:
    """Pure: the same record always renders to the same text."""
    fn = _RENDERERS.get(stored.system)
    if fn is None:
        raise UnsupportedSystemError(
            f"no export template for {stored.system!r}",
            details={"system": str(stored.system)},
        )
    return fn(stored, stored.character)


def read_frontmatter(text: str) -> Dict[str, Any]:
    m = _FRONTMATTER_RE.match(text or "")
    if m is None:
        raise ValidationError("document has no frontmatter block")
    data = yaml.safe_load(m.group(1))
    if not isinstance(data, dict):
        raise ValidationError("frontmatter is not a mapping")
    return data
