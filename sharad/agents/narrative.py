from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from sharad.agents.base import Agent, JsonSchema
from sharad.core.context import RenderedContext
from sharad.errors import GenerationError
from sharad.operations import OPERATION_MODELS, GameResponse

logger = logging.getLogger(__name__)


# Not strict: tool call arguments are open objects validated per operation afterwards.
GAME_RESPONSE_SCHEMA = JsonSchema(
    name="game_response",
    schema=GameResponse.model_json_schema(),
    strict=False,
)

RESPONSE_INSTRUCTIONS = (
    "Resolve the player's action as the game master.\n"
    "Return ONLY one JSON object with keys:\n"
    '- "crunch": short plain-text summary of the mechanical outcome\n'
    '- "fluff": {"speakers": [{"index", "name", "gender"}], "dialogue": [{"speaker_index", "text"}]}\n'
    '- "tool_calls": [{"name": <tool name>, "arguments": {...}}] for every state change or dice roll\n'
    "Use only the tools listed under AVAILABLE TOOLS and only their declared fields.\n"
)


def _tool_schema(model: Any) -> dict[str, Any]:
    schema = model.model_json_schema()
    schema.get("properties", {}).pop("op", None)
    required = [f for f in schema.get("required", []) if f != "op"]
    if required:
        schema["required"] = required
    schema.pop("title", None)
    return schema


def render_tool_catalog() -> str:
    """One line per operation: name plus its JSON schema (without the `op` tag)."""

    lines: list[str] = []
    for name, model in OPERATION_MODELS.items():
        lines.append(f"- {name}: {json.dumps(_tool_schema(model), separators=(',', ':'))}")
    return "\n".join(lines)


class NarrativeGenerator(Protocol):
    async def generate(self, ctx: RenderedContext) -> str:  # pragma: no cover
        ...


class AgentNarrativeGenerator:
    """Single-attempt generator returning the raw response text.

    Parsing, retries and timeouts belong to the orchestrator.
    """

    def __init__(self, *, agent: Agent) -> None:
        self._agent = agent

    async def generate(self, ctx: RenderedContext) -> str:
        try:
            action = await self._agent.propose_action(
                prompt=RESPONSE_INSTRUCTIONS,
                ctx=ctx,
                structured_output=GAME_RESPONSE_SCHEMA,
            )
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Narrative generator call failed: {e}") from e

        if not action.content.strip():
            raise GenerationError("Narrative generator returned an empty response")

        logger.debug("Narrative generator returned %d chars", len(action.content))
        return action.content
