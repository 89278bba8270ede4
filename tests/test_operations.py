from __future__ import annotations

import pytest

from sharad.errors import SchemaValidationError
from sharad.models import Race
from sharad.operations import (
    CreateCharacter,
    DiceRoll,
    UpdateAttributes,
    UpdateInventory,
    validate_operation,
    validate_tool_calls,
)


def _create_args(**overrides: object) -> dict[str, object]:
    args: dict[str, object] = {
        "name": "Alexei",
        "race": "Human",
        "gender": "male",
        "backstory": "Ex-Aztechnology courier.",
        "main": True,
        "attributes": {
            "body": 3,
            "agility": 4,
            "reaction": 3,
            "strength": 2,
            "willpower": 3,
            "logic": 3,
            "intuition": 4,
            "charisma": 4,
            "edge": 3,
        },
        "skills": {"social": [{"name": "Negotiation", "rating": 3}]},
        "nuyen": 6_000,
    }
    args.update(overrides)
    return args


def test_create_character_is_decoded_into_typed_operation() -> None:
    op = validate_operation("create_character_sheet", _create_args())
    assert isinstance(op, CreateCharacter)
    assert op.attributes.magic == 0
    assert op.skills.social[0].rating == 3


@pytest.mark.parametrize("nuyen", [5_999, 450_001])
def test_starting_nuyen_bounds(nuyen: int) -> None:
    with pytest.raises(SchemaValidationError) as exc:
        validate_operation("create_character_sheet", _create_args(nuyen=nuyen))
    assert exc.value.fields == ["nuyen"]
    assert exc.value.op == "create_character_sheet"


def test_unknown_race_names_the_field() -> None:
    with pytest.raises(SchemaValidationError) as exc:
        validate_operation("create_character_sheet", _create_args(race="Centaur"))
    assert "race" in exc.value.fields


def test_undeclared_fields_are_rejected() -> None:
    with pytest.raises(SchemaValidationError) as exc:
        validate_operation("create_character_sheet", _create_args(favorite_color="red"))
    assert "favorite_color" in exc.value.fields


@pytest.mark.parametrize("value", [1, 3, 6, 8, 10])
def test_update_attributes_accepts_in_range(value: int) -> None:
    op = validate_operation("update_basic_attributes", {"character_name": "Alexei", "updates": {"body": value}})
    assert isinstance(op, UpdateAttributes)
    assert op.updates.attribute_values() == {"body": value}


@pytest.mark.parametrize("field,value", [("body", 0), ("body", 11), ("magic", -1), ("resonance", 7)])
def test_update_attributes_rejects_out_of_range(field: str, value: int) -> None:
    with pytest.raises(SchemaValidationError) as exc:
        validate_operation("update_basic_attributes", {"character_name": "Alexei", "updates": {field: value}})
    assert exc.value.fields == [f"updates.{field}"]


@pytest.mark.parametrize("value", ["5", 5.0, True])
def test_update_attributes_rejects_non_integer_values(value: object) -> None:
    with pytest.raises(SchemaValidationError) as exc:
        validate_operation("update_basic_attributes", {"character_name": "Alexei", "updates": {"body": value}})
    assert exc.value.fields == ["updates.body"]


def test_enum_fields_still_accept_strings() -> None:
    op = validate_operation("update_basic_attributes", {"character_name": "Alexei", "updates": {"race": "Human"}})
    assert op.updates.race == Race.human


def test_nested_item_quantity_is_strict() -> None:
    with pytest.raises(SchemaValidationError) as exc:
        validate_operation(
            "update_inventory",
            {"character_name": "Alexei", "operation": "Add", "item": {"name": "Credstick", "quantity": "1"}},
        )
    assert exc.value.fields == ["item.quantity"]


def test_main_flag_must_be_a_bool() -> None:
    with pytest.raises(SchemaValidationError) as exc:
        validate_operation("create_character_sheet", _create_args(main="true"))
    assert exc.value.fields == ["main"]


def test_update_attributes_allows_magic_zero_and_requires_some_field() -> None:
    op = validate_operation("update_basic_attributes", {"character_name": "Alexei", "updates": {"magic": 0}})
    assert op.updates.attribute_values() == {"magic": 0}

    with pytest.raises(SchemaValidationError):
        validate_operation("update_basic_attributes", {"character_name": "Alexei", "updates": {}})


@pytest.mark.parametrize("loyalty", [0, 7])
def test_contact_loyalty_bounds(loyalty: int) -> None:
    with pytest.raises(SchemaValidationError) as exc:
        validate_operation(
            "update_contacts",
            {
                "character_name": "Alexei",
                "operation": "Add",
                "contacts": [{"name": "Mina", "loyalty": loyalty, "connection": 3}],
            },
        )
    assert exc.value.fields == ["contacts.0.loyalty"]


def test_skill_rating_bounds() -> None:
    with pytest.raises(SchemaValidationError):
        validate_operation(
            "update_skills",
            {"character_name": "Alexei", "skills": {"combat": [{"name": "Pistols", "rating": 7}]}},
        )


def test_inventory_operation_enum() -> None:
    op = validate_operation(
        "update_inventory",
        {"character_name": "Alexei", "operation": "Add", "item": {"name": "Credstick", "quantity": 1}},
    )
    assert isinstance(op, UpdateInventory)

    with pytest.raises(SchemaValidationError) as exc:
        validate_operation(
            "update_inventory",
            {"character_name": "Alexei", "operation": "Steal", "item": {"name": "Credstick", "quantity": 1}},
        )
    assert exc.value.fields == ["operation"]


def test_dice_roll_extra_dice_bounds() -> None:
    op = validate_operation(
        "perform_dice_roll",
        {
            "character_name": "Alexei",
            "attribute": "charisma",
            "skill": "Negotiation",
            "limit_type": "social",
            "edge_action": "AddExtraDice",
            "extra_dice": 5,
        },
    )
    assert isinstance(op, DiceRoll)

    with pytest.raises(SchemaValidationError) as exc:
        validate_operation(
            "perform_dice_roll",
            {
                "character_name": "Alexei",
                "attribute": "charisma",
                "skill": "Negotiation",
                "limit_type": "social",
                "extra_dice": 6,
            },
        )
    assert exc.value.fields == ["extra_dice"]


def test_image_prompt_length_is_bounded() -> None:
    with pytest.raises(SchemaValidationError):
        validate_operation("generate_character_image", {"prompt": "x" * 3_001})


def test_unknown_operation_is_rejected() -> None:
    with pytest.raises(SchemaValidationError) as exc:
        validate_operation("delete_universe", {})
    assert exc.value.fields == ["name"]


def test_validate_tool_calls_partitions_and_keeps_indices() -> None:
    result = validate_tool_calls(
        [
            {"name": "update_inventory", "arguments": {"character_name": "Alexei", "operation": "Add", "item": {"name": "Credstick", "quantity": 1}}},
            {"name": "update_basic_attributes", "arguments": {"character_name": "Alexei", "updates": {"body": 0}}},
            {"arguments": {}},
            {"name": "perform_dice_roll", "arguments": '{"character_name": "Alexei", "attribute": "charisma", "skill": "Negotiation", "limit_type": "social"}'},
        ]
    )

    assert [idx for idx, _ in result.accepted] == [0, 3]
    assert [(r.index, r.op, r.kind) for r in result.rejected] == [
        (1, "update_basic_attributes", "validation"),
        (2, "(unknown)", "validation"),
    ]
    assert result.rejected[0].fields == ["updates.body"]
