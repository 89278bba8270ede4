"""Operation contracts and response-envelope validation.

Tool calls proposed by the narrative generator are decoded into a closed tagged
union (`Operation`, tagged by `op`). Undeclared fields, missing required fields,
values outside enum sets and numeric bounds are all rejected here, before
anything touches the game state. Nothing in this module has side effects.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from sharad.errors import GenerationError, SchemaValidationError
from sharad.models import (
    AttributeName,
    Contact,
    EdgeAction,
    Item,
    LimitType,
    Quality,
    Race,
    SkillRating,
    UpdateOperation,
)

MIN_STARTING_NUYEN = 6_000
MAX_STARTING_NUYEN = 450_000
# Widest racial maximum (Troll body and strength); per-race limits are checked on apply.
MAX_CORE_ATTRIBUTE = 10
# Leaves room for the house style preamble inside the image model's 4000 char cap.
MAX_IMAGE_PROMPT_CHARS = 3_000

RejectionKind = Literal["validation", "state", "mechanics"]


class _Contract(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SkillSet(_Contract):
    combat: list[SkillRating] = Field(default_factory=list)
    physical: list[SkillRating] = Field(default_factory=list)
    social: list[SkillRating] = Field(default_factory=list)
    technical: list[SkillRating] = Field(default_factory=list)
    knowledge: list[SkillRating] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not any((self.combat, self.physical, self.social, self.technical, self.knowledge))


class StartingAttributes(_Contract):
    body: StrictInt = Field(..., ge=1, le=MAX_CORE_ATTRIBUTE)
    agility: StrictInt = Field(..., ge=1, le=MAX_CORE_ATTRIBUTE)
    reaction: StrictInt = Field(..., ge=1, le=MAX_CORE_ATTRIBUTE)
    strength: StrictInt = Field(..., ge=1, le=MAX_CORE_ATTRIBUTE)
    willpower: StrictInt = Field(..., ge=1, le=MAX_CORE_ATTRIBUTE)
    logic: StrictInt = Field(..., ge=1, le=MAX_CORE_ATTRIBUTE)
    intuition: StrictInt = Field(..., ge=1, le=MAX_CORE_ATTRIBUTE)
    charisma: StrictInt = Field(..., ge=1, le=MAX_CORE_ATTRIBUTE)
    edge: StrictInt = Field(..., ge=1, le=MAX_CORE_ATTRIBUTE)
    magic: StrictInt = Field(0, ge=0, le=6)
    resonance: StrictInt = Field(0, ge=0, le=6)


class AttributeChanges(_Contract):
    """Partial attribute/identity update; at least one field must be present."""

    body: StrictInt | None = Field(None, ge=1, le=MAX_CORE_ATTRIBUTE)
    agility: StrictInt | None = Field(None, ge=1, le=MAX_CORE_ATTRIBUTE)
    reaction: StrictInt | None = Field(None, ge=1, le=MAX_CORE_ATTRIBUTE)
    strength: StrictInt | None = Field(None, ge=1, le=MAX_CORE_ATTRIBUTE)
    willpower: StrictInt | None = Field(None, ge=1, le=MAX_CORE_ATTRIBUTE)
    logic: StrictInt | None = Field(None, ge=1, le=MAX_CORE_ATTRIBUTE)
    intuition: StrictInt | None = Field(None, ge=1, le=MAX_CORE_ATTRIBUTE)
    charisma: StrictInt | None = Field(None, ge=1, le=MAX_CORE_ATTRIBUTE)
    edge: StrictInt | None = Field(None, ge=1, le=MAX_CORE_ATTRIBUTE)
    magic: StrictInt | None = Field(None, ge=0, le=6)
    resonance: StrictInt | None = Field(None, ge=0, le=6)

    nuyen: StrictInt | None = Field(None, ge=0)
    race: Race | None = None
    gender: str | None = None
    backstory: str | None = None
    lifestyle: str | None = None

    @model_validator(mode="after")
    def _not_empty(self) -> AttributeChanges:
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided")
        return self

    def attribute_values(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for attr in AttributeName:
            value = getattr(self, attr.value)
            if value is not None:
                out[attr.value] = value
        return out


class CreateCharacter(_Contract):
    op: Literal["create_character_sheet"]
    name: str = Field(..., min_length=1)
    race: Race
    gender: str
    backstory: str
    main: StrictBool = False
    attributes: StartingAttributes
    skills: SkillSet = Field(default_factory=SkillSet)
    qualities: list[Quality] = Field(default_factory=list)
    contacts: list[Contact] = Field(default_factory=list)
    inventory: list[Item] = Field(default_factory=list)
    nuyen: StrictInt = Field(..., ge=MIN_STARTING_NUYEN, le=MAX_STARTING_NUYEN)


class UpdateAttributes(_Contract):
    op: Literal["update_basic_attributes"]
    character_name: str = Field(..., min_length=1)
    updates: AttributeChanges


class UpdateSkills(_Contract):
    op: Literal["update_skills"]
    character_name: str = Field(..., min_length=1)
    skills: SkillSet

    @model_validator(mode="after")
    def _not_empty(self) -> UpdateSkills:
        if self.skills.is_empty():
            raise ValueError("skills must contain at least one entry")
        return self


class UpdateInventory(_Contract):
    op: Literal["update_inventory"]
    character_name: str = Field(..., min_length=1)
    operation: UpdateOperation
    item: Item


class UpdateQualities(_Contract):
    op: Literal["update_qualities"]
    character_name: str = Field(..., min_length=1)
    operation: Literal["Add", "Remove"]
    qualities: list[Quality] = Field(..., min_length=1)


class UpdateContacts(_Contract):
    op: Literal["update_contacts"]
    character_name: str = Field(..., min_length=1)
    operation: UpdateOperation
    contacts: list[Contact] = Field(..., min_length=1)


class UpdateAugmentations(_Contract):
    op: Literal["update_augmentations"]
    character_name: str = Field(..., min_length=1)
    operation: Literal["Add", "Remove"]
    augmentation_type: Literal["cyberware", "bioware"]
    augmentations: list[str] = Field(..., min_length=1)


class DiceRoll(_Contract):
    op: Literal["perform_dice_roll"]
    character_name: str = Field(..., min_length=1)
    attribute: AttributeName
    skill: str = Field(..., min_length=1)
    limit_type: LimitType
    edge_action: EdgeAction | None = None
    extra_dice: StrictInt | None = Field(None, ge=1, le=5)
    threshold: StrictInt | None = Field(None, ge=0)


class Appearance(_Contract):
    gender: str = ""
    age: str = ""
    build: str = ""
    hair: str = ""
    eyes: str = ""
    clothing: str = ""
    features: str = ""


class Scene(_Contract):
    setting: str = ""
    lighting: str = ""
    mood: str = ""


class GenerateImage(_Contract):
    op: Literal["generate_character_image"]
    character_name: str | None = None
    appearance: Appearance = Field(default_factory=Appearance)
    scene: Scene = Field(default_factory=Scene)
    prompt: str = Field(..., min_length=1, max_length=MAX_IMAGE_PROMPT_CHARS)


Operation = Annotated[
    Union[
        CreateCharacter,
        UpdateAttributes,
        UpdateSkills,
        UpdateInventory,
        UpdateQualities,
        UpdateContacts,
        UpdateAugmentations,
        DiceRoll,
        GenerateImage,
    ],
    Field(discriminator="op"),
]

OPERATION_MODELS: dict[str, type[BaseModel]] = {
    "create_character_sheet": CreateCharacter,
    "update_basic_attributes": UpdateAttributes,
    "update_skills": UpdateSkills,
    "update_inventory": UpdateInventory,
    "update_qualities": UpdateQualities,
    "update_contacts": UpdateContacts,
    "update_augmentations": UpdateAugmentations,
    "perform_dice_roll": DiceRoll,
    "generate_character_image": GenerateImage,
}

_OPERATION_ADAPTER: TypeAdapter[Any] = TypeAdapter(Operation)


def _error_fields(err: ValidationError, *, op: str) -> list[str]:
    fields: list[str] = []
    for e in err.errors():
        loc = list(e.get("loc", ()))
        # Discriminated unions prefix the location with the tag.
        if loc and loc[0] == op:
            loc = loc[1:]
        path = ".".join(str(p) for p in loc) or "(root)"
        if path not in fields:
            fields.append(path)
    return fields


def _error_summary(err: ValidationError) -> str:
    return "; ".join(str(e.get("msg", "invalid")) for e in err.errors())


def validate_operation(name: str, arguments: Mapping[str, Any]) -> Operation:
    """Decode one tool call into a typed operation or raise SchemaValidationError."""

    if name not in OPERATION_MODELS:
        raise SchemaValidationError(op=name, fields=["name"], message=f"unknown operation '{name}'")
    if "op" in arguments:
        raise SchemaValidationError(op=name, fields=["op"], message="undeclared field")

    try:
        return _OPERATION_ADAPTER.validate_python({**arguments, "op": name})
    except ValidationError as e:
        raise SchemaValidationError(op=name, fields=_error_fields(e, op=name), message=_error_summary(e)) from e


class ToolCall(_Contract):
    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)

    @field_validator("arguments", mode="before")
    @classmethod
    def _decode_string_arguments(cls, value: Any) -> Any:
        # OpenAI-style tool calls carry arguments as a JSON string.
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError as e:
                raise ValueError(f"arguments are not valid JSON: {e}") from e
        return value


class OperationRejection(BaseModel):
    index: int
    op: str
    kind: RejectionKind
    fields: list[str] = Field(default_factory=list)
    message: str


@dataclass(frozen=True, slots=True)
class ValidatedCalls:
    accepted: list[tuple[int, Operation]]
    rejected: list[OperationRejection]


def validate_tool_calls(calls: Sequence[Any]) -> ValidatedCalls:
    """Validate every proposed call independently; one bad call never sinks the rest."""

    accepted: list[tuple[int, Operation]] = []
    rejected: list[OperationRejection] = []

    for idx, raw in enumerate(calls):
        try:
            call = ToolCall.model_validate(raw)
        except ValidationError as e:
            name = raw.get("name") if isinstance(raw, dict) else None
            op = str(name) if name else "(unknown)"
            rejected.append(
                OperationRejection(
                    index=idx,
                    op=op,
                    kind="validation",
                    fields=_error_fields(e, op=op),
                    message=_error_summary(e),
                )
            )
            continue

        try:
            accepted.append((idx, validate_operation(call.name, call.arguments)))
        except SchemaValidationError as e:
            rejected.append(OperationRejection(index=idx, op=e.op, kind="validation", fields=e.fields, message=e.message))

    return ValidatedCalls(accepted=accepted, rejected=rejected)


# ---- response envelope ----


class Speaker(_Contract):
    index: StrictInt = Field(..., ge=0)
    name: str = Field(..., min_length=1)
    gender: str = ""


class DialogueLine(_Contract):
    speaker_index: StrictInt = Field(..., ge=0)
    text: str = Field(..., min_length=1)


class Fluff(_Contract):
    speakers: list[Speaker] = Field(..., min_length=1)
    dialogue: list[DialogueLine] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _speakers_are_declared(self) -> Fluff:
        indices = [s.index for s in self.speakers]
        if len(indices) != len(set(indices)):
            raise ValueError("speaker indices must be unique")
        known = set(indices)
        for line in self.dialogue:
            if line.speaker_index not in known:
                raise ValueError(f"dialogue references undeclared speaker {line.speaker_index}")
        return self

    def as_text(self) -> str:
        names = {s.index: s.name for s in self.speakers}
        return "\n".join(f"{names[line.speaker_index]}: {line.text}" for line in self.dialogue)


class GameResponse(_Contract):
    """Top-level payload returned by the narrative generator."""

    crunch: str
    fluff: Fluff
    # Raw calls; each one is validated on its own by `validate_tool_calls`.
    tool_calls: list[Any] = Field(default_factory=list)


_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_game_response(text: str) -> GameResponse:
    """Parse generator output. Anything unusable is a GenerationError (retryable)."""

    body = text.strip()
    fenced = _FENCE_RE.match(body)
    if fenced:
        body = fenced.group(1)

    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Narrative generator returned non-JSON output: {e}") from e

    if not isinstance(data, dict):
        raise GenerationError("Narrative generator returned JSON that is not an object")

    try:
        return GameResponse.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(_error_fields(e, op=""))
        raise GenerationError(f"Narrative generator response is malformed ({fields}): {_error_summary(e)}") from e
