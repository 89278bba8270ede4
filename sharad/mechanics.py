"""Dice resolution and derived-attribute math.

Everything here is pure: no I/O and no shared state. Randomness comes from an
injected source exposing `randint` (a `random.Random` in production, a scripted
source in tests).

Dice policy (fixed):
- pool = attribute + skill, never below 1
- a die showing 5 or 6 is one hit; sixes do not explode, so a pool of N dice
  yields exactly N values
- hits are capped by the roll's limit unless the edge action is PushTheLimit
- glitch: more than half of the dice show 1; critical glitch: glitch with no hits
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

from sharad.errors import MechanicsError
from sharad.models import (
    CORE_ATTRIBUTES,
    AttributeName,
    Attributes,
    Character,
    DiceRollResult,
    EdgeAction,
    LimitType,
    Race,
)

HIT_MIN = 5
MAX_EXTRA_DICE = 5
DEFAULT_ATTRIBUTE_MAX = 6
SPECIAL_ATTRIBUTE_MAX = 6


class DieSource(Protocol):
    def randint(self, a: int, b: int) -> int:  # pragma: no cover
        ...


# Attribute maxima that differ from the default of 6.
RACIAL_MAXIMA: dict[Race, dict[str, int]] = {
    Race.human: {"edge": 7},
    Race.elf: {"agility": 7, "charisma": 8},
    Race.dwarf: {"body": 8, "agility": 5, "reaction": 5, "strength": 8, "willpower": 7},
    Race.ork: {"body": 9, "strength": 8, "logic": 5, "charisma": 5},
    Race.troll: {"body": 10, "agility": 5, "strength": 10, "logic": 5, "intuition": 5, "charisma": 4},
}

RACIAL_BONUSES: dict[Race, dict[str, int]] = {
    Race.human: {},
    Race.elf: {"agility": 1, "charisma": 2},
    Race.dwarf: {"body": 2, "strength": 2, "willpower": 1},
    Race.ork: {"body": 3, "strength": 2},
    Race.troll: {"body": 4, "strength": 4},
}

HUMAN_MIN_EDGE = 2


def attribute_bounds(race: Race, name: AttributeName | str) -> tuple[int, int]:
    attr = AttributeName(name)
    if attr not in CORE_ATTRIBUTES:
        return 0, SPECIAL_ATTRIBUTE_MAX
    return 1, RACIAL_MAXIMA[race].get(attr.value, DEFAULT_ATTRIBUTE_MAX)


def clamp_attributes(attributes: Attributes, race: Race) -> Attributes:
    clamped: dict[str, int] = {}
    for attr in AttributeName:
        lo, hi = attribute_bounds(race, attr)
        clamped[attr.value] = min(max(attributes.value_of(attr), lo), hi)
    return attributes.model_copy(update=clamped)


def apply_race_modifiers(attributes: Attributes, race: Race) -> Attributes:
    bumped = {name: attributes.value_of(name) + bonus for name, bonus in RACIAL_BONUSES[race].items()}
    result = clamp_attributes(attributes.model_copy(update=bumped), race)
    if race == Race.human and result.edge < HUMAN_MIN_EDGE:
        result = result.model_copy(update={"edge": HUMAN_MIN_EDGE})
    return result


@dataclass(frozen=True, slots=True)
class Limits:
    physical: int
    mental: int
    social: int

    def for_type(self, limit_type: LimitType | str) -> int:
        return int(getattr(self, LimitType(limit_type).value))


@dataclass(frozen=True, slots=True)
class ConditionMonitors:
    physical: int
    stun: int


@dataclass(frozen=True, slots=True)
class DerivedAttributes:
    limits: Limits
    monitors: ConditionMonitors
    initiative: int
    initiative_dice: int = 1


def derive(character: Character) -> DerivedAttributes:
    """Recompute limits, condition monitors and initiative from current attributes."""

    a = character.attributes
    limits = Limits(
        physical=math.ceil((a.strength * 2 + a.body + a.reaction) / 3),
        mental=math.ceil((a.logic * 2 + a.intuition + a.willpower) / 3),
        social=math.ceil((a.charisma * 2 + a.willpower + int(character.essence)) / 3),
    )
    monitors = ConditionMonitors(
        physical=8 + math.ceil(a.body / 2),
        stun=8 + math.ceil(a.willpower / 2),
    )
    return DerivedAttributes(limits=limits, monitors=monitors, initiative=a.reaction + a.intuition)


def dice_pool(character: Character, attribute: AttributeName | str, skill: str) -> int:
    return max(1, character.attributes.value_of(attribute) + character.skills.rating(skill))


def roll_die(rng: DieSource) -> int:
    return rng.randint(1, 6)


def is_hit(value: int) -> bool:
    return value >= HIT_MIN


@dataclass(frozen=True, slots=True)
class RollOutcome:
    dice: tuple[int, ...]
    hits: int
    limit_applied: bool
    success: bool
    glitch: bool
    critical_glitch: bool
    critical_success: bool


def check_edge_parameters(edge_action: EdgeAction | None, extra_dice: int | None) -> None:
    if edge_action == EdgeAction.add_extra_dice:
        if extra_dice is None:
            raise MechanicsError("AddExtraDice requires extra_dice")
        if not 1 <= extra_dice <= MAX_EXTRA_DICE:
            raise MechanicsError(f"extra_dice must be between 1 and {MAX_EXTRA_DICE}, got {extra_dice}")
    elif extra_dice is not None:
        raise MechanicsError("extra_dice is only valid with the AddExtraDice edge action")


def roll_pool(
    *,
    pool: int,
    rng: DieSource,
    limit: int | None = None,
    threshold: int | None = None,
    edge_action: EdgeAction | None = None,
    extra_dice: int | None = None,
) -> RollOutcome:
    check_edge_parameters(edge_action, extra_dice)
    if threshold is not None and threshold < 0:
        raise MechanicsError("threshold cannot be negative")

    dice = [roll_die(rng) for _ in range(max(1, pool))]

    if edge_action == EdgeAction.reroll_failures:
        dice = [d if is_hit(d) else roll_die(rng) for d in dice]
    elif edge_action == EdgeAction.add_extra_dice and extra_dice:
        dice.extend(roll_die(rng) for _ in range(extra_dice))

    hits = sum(1 for d in dice if is_hit(d))
    limit_applied = False
    if limit is not None and edge_action != EdgeAction.push_the_limit and hits > limit:
        hits = limit
        limit_applied = True

    ones = sum(1 for d in dice if d == 1)
    glitch = ones * 2 > len(dice)

    if threshold is None:
        success = hits > 0
        critical_success = False
    else:
        success = hits >= threshold
        critical_success = threshold > 0 and hits >= threshold * 2

    return RollOutcome(
        dice=tuple(dice),
        hits=hits,
        limit_applied=limit_applied,
        success=success,
        glitch=glitch,
        critical_glitch=glitch and hits == 0,
        critical_success=critical_success,
    )


def resolve_dice_roll(
    *,
    character: Character,
    attribute: AttributeName,
    skill: str,
    limit_type: LimitType,
    rng: DieSource,
    threshold: int | None = None,
    edge_action: EdgeAction | None = None,
    extra_dice: int | None = None,
) -> DiceRollResult:
    """Roll a character's attribute+skill test. Does not touch the character."""

    pool = dice_pool(character, attribute, skill)
    limit = derive(character).limits.for_type(limit_type)
    outcome = roll_pool(
        pool=pool,
        rng=rng,
        limit=limit,
        threshold=threshold,
        edge_action=edge_action,
        extra_dice=extra_dice,
    )
    return DiceRollResult(
        character_name=character.name,
        attribute=attribute,
        skill=skill,
        limit_type=limit_type,
        limit=limit,
        edge_action=edge_action,
        extra_dice=extra_dice,
        threshold=threshold,
        pool=pool,
        dice=outcome.dice,
        hits=outcome.hits,
        limit_applied=outcome.limit_applied,
        success=outcome.success,
        glitch=outcome.glitch,
        critical_glitch=outcome.critical_glitch,
        critical_success=outcome.critical_success,
    )
