from __future__ import annotations

from sharad.mechanics import derive
from sharad.models import AttributeName, Character, GameState, SkillCategory

_ATTR_ABBREV = {
    AttributeName.body: "BOD",
    AttributeName.agility: "AGI",
    AttributeName.reaction: "REA",
    AttributeName.strength: "STR",
    AttributeName.willpower: "WIL",
    AttributeName.logic: "LOG",
    AttributeName.intuition: "INT",
    AttributeName.charisma: "CHA",
    AttributeName.edge: "EDG",
    AttributeName.magic: "MAG",
    AttributeName.resonance: "RES",
}


def _sorted_characters(state: GameState) -> list[Character]:
    # Main character first, then NPCs alphabetically.
    return sorted(state.characters.values(), key=lambda c: (not c.main, c.name.casefold()))


def character_sheet_text(character: Character) -> str:
    """LLM-friendly sheet for one character, derived values included."""

    d = derive(character)
    label = f"{character.name} ({character.race.value}{', ' + character.gender if character.gender else ''})"
    if character.main:
        label += " [PLAYER CHARACTER]"

    attrs = " ".join(f"{_ATTR_ABBREV[a]} {character.attributes.value_of(a)}" for a in AttributeName)
    lines = [
        f"- {label}",
        f"  - Attributes: {attrs}",
        f"  - Limits: physical {d.limits.physical}, mental {d.limits.mental}, social {d.limits.social}",
        f"  - Condition monitors: physical {d.monitors.physical}, stun {d.monitors.stun}",
        f"  - Initiative: {d.initiative} + {d.initiative_dice}d6",
        f"  - Essence: {character.essence:g}; Nuyen: {character.nuyen}; Lifestyle: {character.lifestyle}",
    ]

    for category in SkillCategory:
        entries = character.skills.category(category)
        if entries:
            joined = ", ".join(f"{s.name} {s.rating}" for s in entries)
            lines.append(f"  - {category.value.capitalize()} skills: {joined}")

    if character.qualities:
        joined = ", ".join(f"{q.name} ({'+' if q.positive else '-'})" for q in character.qualities)
        lines.append(f"  - Qualities: {joined}")
    if character.inventory:
        joined = ", ".join(f"{i.quantity}x {i.name}" for i in character.inventory)
        lines.append(f"  - Inventory: {joined}")
    if character.contacts:
        joined = ", ".join(f"{c.name} (L{c.loyalty}/C{c.connection})" for c in character.contacts)
        lines.append(f"  - Contacts: {joined}")
    if character.cyberware:
        lines.append(f"  - Cyberware: {', '.join(character.cyberware)}")
    if character.bioware:
        lines.append(f"  - Bioware: {', '.join(character.bioware)}")

    return "\n".join(lines)


def game_state_text(state: GameState) -> str:
    characters = _sorted_characters(state)
    if not characters:
        return f"GAME STATE (turn {state.turn}):\n- no characters yet; the player character must be created first"

    lines = [f"GAME STATE (turn {state.turn}):"]
    lines.extend(character_sheet_text(c) for c in characters)
    return "\n".join(lines).strip()
