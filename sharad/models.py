from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt

from sharad.core.messages import Message
from sharad.errors import StateError


class Race(StrEnum):
    human = "Human"
    elf = "Elf"
    dwarf = "Dwarf"
    ork = "Ork"
    troll = "Troll"


class AttributeName(StrEnum):
    body = "body"
    agility = "agility"
    reaction = "reaction"
    strength = "strength"
    willpower = "willpower"
    logic = "logic"
    intuition = "intuition"
    charisma = "charisma"
    edge = "edge"
    magic = "magic"
    resonance = "resonance"


# Attributes that can never drop below 1.
CORE_ATTRIBUTES: tuple[AttributeName, ...] = tuple(
    a for a in AttributeName if a not in (AttributeName.magic, AttributeName.resonance)
)


class LimitType(StrEnum):
    physical = "physical"
    mental = "mental"
    social = "social"


class EdgeAction(StrEnum):
    reroll_failures = "RerollFailures"
    add_extra_dice = "AddExtraDice"
    push_the_limit = "PushTheLimit"


class UpdateOperation(StrEnum):
    add = "Add"
    remove = "Remove"
    modify = "Modify"


class SkillCategory(StrEnum):
    combat = "combat"
    physical = "physical"
    social = "social"
    technical = "technical"
    knowledge = "knowledge"


class Attributes(BaseModel):
    body: int = Field(1, ge=0)
    agility: int = Field(1, ge=0)
    reaction: int = Field(1, ge=0)
    strength: int = Field(1, ge=0)
    willpower: int = Field(1, ge=0)
    logic: int = Field(1, ge=0)
    intuition: int = Field(1, ge=0)
    charisma: int = Field(1, ge=0)
    edge: int = Field(1, ge=0)
    magic: int = Field(0, ge=0)
    resonance: int = Field(0, ge=0)

    def value_of(self, name: AttributeName | str) -> int:
        return int(getattr(self, AttributeName(name).value))


class SkillRating(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    rating: StrictInt = Field(..., ge=0, le=6)


class Skills(BaseModel):
    combat: list[SkillRating] = Field(default_factory=list)
    physical: list[SkillRating] = Field(default_factory=list)
    social: list[SkillRating] = Field(default_factory=list)
    technical: list[SkillRating] = Field(default_factory=list)
    knowledge: list[SkillRating] = Field(default_factory=list)

    def category(self, category: SkillCategory | str) -> list[SkillRating]:
        return getattr(self, SkillCategory(category).value)

    def rating(self, name: str) -> int:
        """Rating of a skill in any category (case-insensitive); 0 when untrained."""

        wanted = name.strip().casefold()
        for category in SkillCategory:
            for entry in self.category(category):
                if entry.name.casefold() == wanted:
                    return entry.rating
        return 0


class Item(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    quantity: StrictInt = Field(..., ge=0)
    description: str = ""


class Contact(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    description: str = ""
    loyalty: StrictInt = Field(..., ge=1, le=6)
    connection: StrictInt = Field(..., ge=1, le=6)


class Quality(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    positive: StrictBool = True


class Character(BaseModel):
    name: str
    race: Race
    gender: str = ""
    backstory: str = ""
    # Distinguishes the player character from NPCs.
    main: bool = False

    attributes: Attributes = Field(default_factory=Attributes)
    skills: Skills = Field(default_factory=Skills)
    qualities: list[Quality] = Field(default_factory=list)

    inventory: list[Item] = Field(default_factory=list)
    contacts: list[Contact] = Field(default_factory=list)
    nuyen: int = Field(0, ge=0)
    lifestyle: str = "Street"

    cyberware: list[str] = Field(default_factory=list)
    bioware: list[str] = Field(default_factory=list)
    essence: float = Field(6.0, ge=0.0, le=6.0)

    def find_item(self, name: str) -> Item | None:
        return next((i for i in self.inventory if i.name == name), None)

    def find_contact(self, name: str) -> Contact | None:
        return next((c for c in self.contacts if c.name == name), None)


class DiceRollResult(BaseModel):
    """Outcome of a single dice test. Never mutated once computed."""

    model_config = ConfigDict(frozen=True)

    character_name: str
    attribute: AttributeName
    skill: str
    limit_type: LimitType
    limit: int
    edge_action: EdgeAction | None = None
    extra_dice: int | None = None
    threshold: int | None = None

    pool: int
    dice: tuple[int, ...]
    hits: int
    limit_applied: bool = False

    success: bool
    glitch: bool = False
    critical_glitch: bool = False
    critical_success: bool = False


class GameState(BaseModel):
    """Authoritative record of a session: characters plus turn metadata."""

    characters: dict[str, Character] = Field(default_factory=dict)
    turn: int = 0
    last_dice_rolls: list[DiceRollResult] = Field(default_factory=list)

    def get_character(self, name: str) -> Character | None:
        return self.characters.get(name)

    def require_character(self, name: str) -> Character:
        character = self.characters.get(name)
        if character is None:
            raise StateError(f"Character '{name}' not found")
        return character

    @property
    def main_character(self) -> Character | None:
        return next((c for c in self.characters.values() if c.main), None)


class ArchivistSummary(BaseModel):
    """Bounded long-term memory digest maintained by the archivist."""

    world_facts: list[str] = Field(default_factory=list)
    memories: list[str] = Field(default_factory=list)
    story_leads: list[str] = Field(default_factory=list)

    # Number of log messages this summary accounts for.
    covers_through: int = 0

    def render(self) -> str:
        sections = [
            ("WorldFacts", self.world_facts),
            ("MemoryPackage", self.memories),
            ("StoryLeads", self.story_leads),
        ]
        lines: list[str] = []
        for title, items in sections:
            lines.append(f"# {title}")
            if items:
                lines.extend(f"- {item}" for item in items)
            else:
                lines.append("- (none)")
        return "\n".join(lines)


class TurnPhase(StrEnum):
    awaiting_input = "awaiting_input"
    building_context = "building_context"
    generating_narrative = "generating_narrative"
    validating_output = "validating_output"
    applying_operations = "applying_operations"
    complete = "complete"
    error_recovery = "error_recovery"
    failed = "failed"


class SavedSession(BaseModel):
    session_id: UUID
    save_name: str
    created_at: datetime
    last_updated_at: datetime

    state: GameState = Field(default_factory=GameState)
    messages: list[Message] = Field(default_factory=list)
    summary: ArchivistSummary | None = None
