from __future__ import annotations

import random

import pytest

from fakes import ScriptedDice, make_character
from sharad.errors import MechanicsError
from sharad.mechanics import (
    apply_race_modifiers,
    attribute_bounds,
    clamp_attributes,
    derive,
    dice_pool,
    resolve_dice_roll,
    roll_pool,
)
from sharad.models import AttributeName, Attributes, EdgeAction, LimitType, Race


def test_pool_of_n_dice_yields_exactly_n_values_in_range() -> None:
    rng = random.Random(1234)
    for pool in (1, 2, 7, 12, 20):
        outcome = roll_pool(pool=pool, rng=rng)
        assert len(outcome.dice) == pool
        assert all(1 <= d <= 6 for d in outcome.dice)
        assert outcome.hits == sum(1 for d in outcome.dice if d >= 5)


def test_sixes_do_not_explode() -> None:
    outcome = roll_pool(pool=3, rng=ScriptedDice([6, 6, 6]))
    assert outcome.dice == (6, 6, 6)
    assert outcome.hits == 3


def test_zero_hits_against_positive_threshold_is_failure() -> None:
    outcome = roll_pool(pool=4, rng=ScriptedDice([2, 3, 4, 2]), threshold=1)
    assert outcome.hits == 0
    assert outcome.success is False


def test_no_threshold_needs_one_hit() -> None:
    assert roll_pool(pool=2, rng=ScriptedDice([5, 1])).success is True
    assert roll_pool(pool=2, rng=ScriptedDice([4, 1])).success is False


def test_hits_are_capped_by_limit_unless_pushing_the_limit() -> None:
    capped = roll_pool(pool=5, rng=ScriptedDice([5, 5, 6, 6, 5]), limit=3)
    assert capped.hits == 3
    assert capped.limit_applied is True

    pushed = roll_pool(
        pool=5,
        rng=ScriptedDice([5, 5, 6, 6, 5]),
        limit=3,
        edge_action=EdgeAction.push_the_limit,
    )
    assert pushed.hits == 5
    assert pushed.limit_applied is False


def test_reroll_failures_rerolls_each_non_hit_once() -> None:
    outcome = roll_pool(
        pool=4,
        rng=ScriptedDice([5, 1, 2, 6, 5, 3]),
        edge_action=EdgeAction.reroll_failures,
    )
    assert outcome.dice == (5, 5, 3, 6)
    assert outcome.hits == 3


def test_add_extra_dice_appends_dice() -> None:
    outcome = roll_pool(
        pool=2,
        rng=ScriptedDice([1, 2, 5, 6]),
        edge_action=EdgeAction.add_extra_dice,
        extra_dice=2,
    )
    assert len(outcome.dice) == 4
    assert outcome.hits == 2


@pytest.mark.parametrize("extra", [None, 0, 6])
def test_add_extra_dice_requires_one_to_five(extra: int | None) -> None:
    with pytest.raises(MechanicsError):
        roll_pool(pool=2, rng=ScriptedDice([1] * 10), edge_action=EdgeAction.add_extra_dice, extra_dice=extra)


def test_extra_dice_without_edge_action_is_rejected() -> None:
    with pytest.raises(MechanicsError):
        roll_pool(pool=2, rng=ScriptedDice([1, 1, 1]), extra_dice=1)


def test_glitch_and_critical_glitch() -> None:
    glitch = roll_pool(pool=5, rng=ScriptedDice([1, 1, 1, 5, 2]))
    assert glitch.glitch is True
    assert glitch.critical_glitch is False

    critical = roll_pool(pool=3, rng=ScriptedDice([1, 1, 3]))
    assert critical.glitch is True
    assert critical.critical_glitch is True

    # Exactly half is not a glitch.
    assert roll_pool(pool=4, rng=ScriptedDice([1, 1, 5, 5])).glitch is False


def test_critical_success_needs_double_threshold() -> None:
    assert roll_pool(pool=4, rng=ScriptedDice([5, 5, 6, 6]), threshold=2).critical_success is True
    assert roll_pool(pool=4, rng=ScriptedDice([5, 5, 6, 1]), threshold=2).critical_success is False
    assert roll_pool(pool=4, rng=ScriptedDice([5, 5, 6, 6])).critical_success is False


def test_alexei_negotiation_roll_succeeds_without_touching_the_sheet() -> None:
    alexei = make_character("Alexei", charisma=4, negotiation=3)
    before = alexei.model_dump()
    dice = ScriptedDice([3, 4, 5, 5, 2, 6, 1, 4])

    result = resolve_dice_roll(
        character=alexei,
        attribute=AttributeName.charisma,
        skill="Negotiation",
        limit_type=LimitType.social,
        rng=dice,
        threshold=3,
    )

    assert result.pool == 7
    assert result.dice == (3, 4, 5, 5, 2, 6, 1)
    assert result.hits == 3
    assert result.success is True
    assert result.glitch is False
    assert result.limit == derive(alexei).limits.social
    assert alexei.model_dump() == before


def test_dice_pool_is_at_least_one_and_skill_lookup_ignores_case() -> None:
    c = make_character(charisma=1, negotiation=0)
    assert dice_pool(c, AttributeName.magic, "Spellcasting") == 1
    c2 = make_character(charisma=4, negotiation=3)
    assert dice_pool(c2, "charisma", "negotiation") == 7


def test_derived_values() -> None:
    c = make_character(body=4, strength=5, reaction=3, logic=4, intuition=3, willpower=2, charisma=4)
    d = derive(c)
    assert d.limits.physical == 6  # ceil((10 + 4 + 3) / 3)
    assert d.limits.mental == 5  # ceil((8 + 3 + 2) / 3)
    assert d.limits.social == 6  # ceil((8 + 2 + 6) / 3)
    assert d.monitors.physical == 10
    assert d.monitors.stun == 9
    assert d.initiative == 6
    assert d.initiative_dice == 1


def test_racial_modifiers_and_maxima() -> None:
    troll = apply_race_modifiers(Attributes(body=6, strength=6, charisma=6), Race.troll)
    assert troll.body == 10
    assert troll.strength == 10
    assert troll.charisma == 4

    elf = apply_race_modifiers(Attributes(agility=3, charisma=5), Race.elf)
    assert elf.agility == 4
    assert elf.charisma == 7

    human = apply_race_modifiers(Attributes(edge=1), Race.human)
    assert human.edge == 2


def test_clamp_keeps_core_attributes_at_least_one() -> None:
    clamped = clamp_attributes(Attributes(body=0, magic=9, resonance=0), Race.human)
    assert clamped.body == 1
    assert clamped.magic == 6
    assert clamped.resonance == 0
    assert attribute_bounds(Race.dwarf, "reaction") == (1, 5)
