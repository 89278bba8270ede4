from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from sharad.errors import StateError
from sharad.mechanics import DieSource, apply_race_modifiers, attribute_bounds, resolve_dice_roll
from sharad.models import (
    AttributeName,
    Attributes,
    Character,
    Contact,
    DiceRollResult,
    GameState,
    Quality,
    Race,
    Skills,
    SkillCategory,
    SkillRating,
    UpdateOperation,
)
from sharad.operations import (
    Appearance,
    CreateCharacter,
    DiceRoll,
    GenerateImage,
    Operation,
    Scene,
    UpdateAttributes,
    UpdateAugmentations,
    UpdateContacts,
    UpdateInventory,
    UpdateQualities,
    UpdateSkills,
)

logger = logging.getLogger(__name__)


class OperationOutcome(BaseModel):
    """What one applied operation changed, in presentation-ready form."""

    index: int
    op: str
    character_name: str | None = None
    delta: list[str] = Field(default_factory=list)
    dice: DiceRollResult | None = None
    # Set for image requests; the orchestrator dispatches these.
    image_prompt: str | None = None


def _with_skill(entries: list[SkillRating], update: SkillRating) -> tuple[list[SkillRating], str]:
    wanted = update.name.casefold()
    kept = [e for e in entries if e.name.casefold() != wanted]
    existed = len(kept) != len(entries)
    if update.rating == 0:
        return kept, f"-{update.name}" if existed else f"{update.name} untrained"
    for pos, e in enumerate(entries):
        if e.name.casefold() == wanted:
            out = list(entries)
            out[pos] = update
            return out, f"{update.name} {update.rating}"
    return [*entries, update], f"{update.name} {update.rating}"


def _check_attribute_bounds(race: Race, values: dict[str, int]) -> None:
    for name, value in values.items():
        lo, hi = attribute_bounds(race, name)
        if not lo <= value <= hi:
            raise StateError(f"{name} {value} is outside {lo}..{hi} for a {race.value}")


def _describe_appearance(appearance: Appearance) -> str:
    parts = [f"{k}: {v}" for k, v in appearance.model_dump().items() if v]
    return ", ".join(parts)


def _describe_scene(scene: Scene) -> str:
    parts = [f"{k}: {v}" for k, v in scene.model_dump().items() if v]
    return ", ".join(parts)


class ToolHandler:
    """Applies validated operations to a GameState, one at a time.

    Every mutation is built on a deep copy of the target character and swapped
    into the state only once the whole operation has succeeded.
    """

    def __init__(self, *, rng: DieSource) -> None:
        self._rng = rng
        self._handlers: dict[str, Callable[[GameState, Any], OperationOutcome]] = {
            "create_character_sheet": self._create_character,
            "update_basic_attributes": self._update_attributes,
            "update_skills": self._update_skills,
            "update_inventory": self._update_inventory,
            "update_qualities": self._update_qualities,
            "update_contacts": self._update_contacts,
            "update_augmentations": self._update_augmentations,
            "perform_dice_roll": self._perform_dice_roll,
            "generate_character_image": self._generate_image,
        }

    def apply(self, state: GameState, op: Operation, *, index: int = 0) -> OperationOutcome:
        handler = self._handlers.get(op.op)
        if handler is None:
            raise StateError(f"No handler for operation '{op.op}'")
        outcome = handler(state, op)
        outcome.index = index
        logger.debug("Applied %s: %s", op.op, "; ".join(outcome.delta))
        return outcome

    # ---- characters ----

    def _create_character(self, state: GameState, op: CreateCharacter) -> OperationOutcome:
        if op.name in state.characters:
            raise StateError(f"Character '{op.name}' already exists")
        if op.main and state.main_character is not None:
            raise StateError(f"A main character already exists ('{state.main_character.name}')")

        starting = op.attributes.model_dump()
        _check_attribute_bounds(op.race, starting)
        attributes = apply_race_modifiers(Attributes(**starting), op.race)
        character = Character(
            name=op.name,
            race=op.race,
            gender=op.gender,
            backstory=op.backstory,
            main=op.main,
            attributes=attributes,
            skills=Skills(**op.skills.model_dump()),
            qualities=list(op.qualities),
            contacts=list(op.contacts),
            inventory=list(op.inventory),
            nuyen=op.nuyen,
        )
        state.characters[character.name] = character
        return OperationOutcome(
            index=0,
            op=op.op,
            character_name=character.name,
            delta=[f"created {character.race.value} {character.name}" + (" (main)" if character.main else "")],
        )

    def _update_attributes(self, state: GameState, op: UpdateAttributes) -> OperationOutcome:
        current = state.require_character(op.character_name)
        updated = current.model_copy(deep=True)
        changes = op.updates
        delta: list[str] = []

        values = changes.attribute_values()
        race_changed = changes.race is not None and changes.race != updated.race
        _check_attribute_bounds(changes.race if race_changed else updated.race, values)
        attributes = updated.attributes.model_copy(update=values)

        if race_changed:
            delta.append(f"race: {updated.race.value} -> {changes.race.value}")
            updated.race = changes.race
            # Racial bonuses are clamped to the new race's maxima.
            attributes = apply_race_modifiers(attributes, updated.race)

        for attr in AttributeName:
            before, after = updated.attributes.value_of(attr), attributes.value_of(attr)
            if before != after or attr.value in values:
                delta.append(f"{attr.value}: {before} -> {after}")
        updated.attributes = attributes

        if changes.nuyen is not None:
            delta.append(f"nuyen: {updated.nuyen} -> {changes.nuyen}")
            updated.nuyen = changes.nuyen
        for field in ("gender", "backstory", "lifestyle"):
            value = getattr(changes, field)
            if value is not None:
                setattr(updated, field, value)
                delta.append(f"{field} updated")

        state.characters[updated.name] = updated
        return OperationOutcome(index=0, op=op.op, character_name=updated.name, delta=delta)

    def _update_skills(self, state: GameState, op: UpdateSkills) -> OperationOutcome:
        current = state.require_character(op.character_name)
        updated = current.model_copy(deep=True)
        delta: list[str] = []

        for category in SkillCategory:
            entries = updated.skills.category(category)
            for update in getattr(op.skills, category.value):
                entries, change = _with_skill(entries, update)
                delta.append(f"skills.{category.value}: {change}")
            setattr(updated.skills, category.value, entries)

        state.characters[updated.name] = updated
        return OperationOutcome(index=0, op=op.op, character_name=updated.name, delta=delta)

    # ---- possessions ----

    def _update_inventory(self, state: GameState, op: UpdateInventory) -> OperationOutcome:
        current = state.require_character(op.character_name)
        updated = current.model_copy(deep=True)
        item = op.item
        held = updated.find_item(item.name)

        if op.operation == UpdateOperation.add:
            if held is None:
                updated.inventory.append(item.model_copy())
            else:
                held.quantity += item.quantity
            delta = f"inventory: +{item.quantity} {item.name}"

        elif op.operation == UpdateOperation.remove:
            if held is None:
                raise StateError(f"Item '{item.name}' not in {updated.name}'s inventory")
            if item.quantity >= held.quantity:
                updated.inventory = [i for i in updated.inventory if i.name != item.name]
                delta = f"inventory: -{held.quantity} {item.name}"
            else:
                held.quantity -= item.quantity
                delta = f"inventory: -{item.quantity} {item.name}"

        else:
            if held is None:
                updated.inventory.append(item.model_copy())
                delta = f"inventory: +{item.quantity} {item.name}"
            else:
                held.quantity = item.quantity
                held.description = item.description
                delta = f"inventory: {item.name} set to {item.quantity}"

        state.characters[updated.name] = updated
        return OperationOutcome(index=0, op=op.op, character_name=updated.name, delta=[delta])

    def _update_qualities(self, state: GameState, op: UpdateQualities) -> OperationOutcome:
        current = state.require_character(op.character_name)
        updated = current.model_copy(deep=True)
        delta: list[str] = []

        if op.operation == UpdateOperation.add:
            for quality in op.qualities:
                if any(q.name.casefold() == quality.name.casefold() for q in updated.qualities):
                    continue
                updated.qualities.append(Quality(name=quality.name, positive=quality.positive))
                delta.append(f"qualities: +{quality.name}")
        else:
            for quality in op.qualities:
                wanted = quality.name.casefold()
                if not any(q.name.casefold() == wanted for q in updated.qualities):
                    raise StateError(f"Quality '{quality.name}' not found on {updated.name}")
                updated.qualities = [q for q in updated.qualities if q.name.casefold() != wanted]
                delta.append(f"qualities: -{quality.name}")

        state.characters[updated.name] = updated
        return OperationOutcome(index=0, op=op.op, character_name=updated.name, delta=delta)

    def _update_contacts(self, state: GameState, op: UpdateContacts) -> OperationOutcome:
        current = state.require_character(op.character_name)
        updated = current.model_copy(deep=True)
        delta: list[str] = []

        if op.operation != UpdateOperation.add:
            missing = [c.name for c in op.contacts if updated.find_contact(c.name) is None]
            if missing:
                raise StateError(f"Contact(s) not found on {updated.name}: {', '.join(missing)}")

        for contact in op.contacts:
            if op.operation == UpdateOperation.remove:
                updated.contacts = [c for c in updated.contacts if c.name != contact.name]
                delta.append(f"contacts: -{contact.name}")
                continue

            replacement = Contact(**contact.model_dump())
            existing = [pos for pos, c in enumerate(updated.contacts) if c.name == contact.name]
            if existing:
                updated.contacts[existing[0]] = replacement
                delta.append(
                    f"contacts: {contact.name} (loyalty {contact.loyalty}, connection {contact.connection})"
                )
            else:
                updated.contacts.append(replacement)
                delta.append(f"contacts: +{contact.name}")

        state.characters[updated.name] = updated
        return OperationOutcome(index=0, op=op.op, character_name=updated.name, delta=delta)

    def _update_augmentations(self, state: GameState, op: UpdateAugmentations) -> OperationOutcome:
        current = state.require_character(op.character_name)
        updated = current.model_copy(deep=True)
        installed: list[str] = getattr(updated, op.augmentation_type)
        delta: list[str] = []

        if op.operation == UpdateOperation.add:
            for aug in op.augmentations:
                if aug not in installed:
                    installed.append(aug)
                    delta.append(f"{op.augmentation_type}: +{aug}")
        else:
            missing = [aug for aug in op.augmentations if aug not in installed]
            if missing:
                raise StateError(f"{op.augmentation_type} not installed on {updated.name}: {', '.join(missing)}")
            installed[:] = [aug for aug in installed if aug not in op.augmentations]
            delta.extend(f"{op.augmentation_type}: -{aug}" for aug in op.augmentations)

        state.characters[updated.name] = updated
        return OperationOutcome(index=0, op=op.op, character_name=updated.name, delta=delta)

    # ---- non-mutating ----

    def _perform_dice_roll(self, state: GameState, op: DiceRoll) -> OperationOutcome:
        character = state.require_character(op.character_name)
        result = resolve_dice_roll(
            character=character,
            attribute=op.attribute,
            skill=op.skill,
            limit_type=op.limit_type,
            rng=self._rng,
            threshold=op.threshold,
            edge_action=op.edge_action,
            extra_dice=op.extra_dice,
        )
        state.last_dice_rolls.append(result)

        verdict = "success" if result.success else "failure"
        if result.critical_glitch:
            verdict = "critical glitch"
        elif result.glitch:
            verdict += ", glitch"
        if result.critical_success:
            verdict = "critical success"
        summary = f"dice: {op.attribute.value}+{op.skill} pool {result.pool} -> {result.hits} hits ({verdict})"
        return OperationOutcome(index=0, op=op.op, character_name=character.name, delta=[summary], dice=result)

    def _generate_image(self, state: GameState, op: GenerateImage) -> OperationOutcome:
        lines: list[str] = []
        if op.character_name is not None:
            character = state.require_character(op.character_name)
            lines.append(f"Subject: {character.name}, {character.race.value} {character.gender}".rstrip())
        appearance = _describe_appearance(op.appearance)
        if appearance:
            lines.append(f"Appearance: {appearance}")
        scene = _describe_scene(op.scene)
        if scene:
            lines.append(f"Scene: {scene}")
        lines.append(op.prompt)

        return OperationOutcome(
            index=0,
            op=op.op,
            character_name=op.character_name,
            delta=["image requested"],
            image_prompt="\n".join(lines),
        )
