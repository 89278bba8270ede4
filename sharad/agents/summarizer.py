from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Protocol

from pydantic import BaseModel, Field, ValidationError

from sharad.agents.base import Agent, JsonSchema
from sharad.core.context import RenderedContext
from sharad.core.messages import Message
from sharad.errors import GenerationError
from sharad.models import ArchivistSummary
from sharad.prompts import load_prompt


class _SummaryPayload(BaseModel):
    world_facts: list[str] = Field(default_factory=list)
    memories: list[str] = Field(default_factory=list)
    story_leads: list[str] = Field(default_factory=list)


ARCHIVIST_SUMMARY_SCHEMA = JsonSchema(
    name="archivist_summary",
    schema={
        "type": "object",
        "properties": {
            "world_facts": {"type": "array", "items": {"type": "string"}},
            "memories": {"type": "array", "items": {"type": "string"}},
            "story_leads": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["world_facts", "memories", "story_leads"],
        "additionalProperties": False,
    },
    strict=True,
)


class Summarizer(Protocol):
    async def summarize(
        self,
        *,
        previous: ArchivistSummary | None,
        messages: Sequence[Message],
        max_chars: int,
    ) -> ArchivistSummary:  # pragma: no cover
        ...


def build_summary_prompt(*, previous: ArchivistSummary | None, messages: Sequence[Message], max_chars: int) -> str:
    parts = [
        f"Update the long-term memory for this session. Keep the whole summary under {max_chars} characters.",
        "Return ONLY JSON with string arrays: world_facts, memories, story_leads.",
        "PREVIOUS SUMMARY:\n" + (previous.render() if previous is not None else "- (none)"),
        "NEW MESSAGES (oldest first):\n" + "\n".join(f"[{m.role}] {m.content.strip()}" for m in messages),
    ]
    return "\n\n".join(parts)


class AgentSummarizer:
    def __init__(self, *, agent: Agent, system_prompt: str | None = None) -> None:
        self._agent = agent
        self._system_prompt = system_prompt if system_prompt is not None else load_prompt("archivist.txt")

    async def summarize(
        self,
        *,
        previous: ArchivistSummary | None,
        messages: Sequence[Message],
        max_chars: int,
    ) -> ArchivistSummary:
        prompt = build_summary_prompt(previous=previous, messages=messages, max_chars=max_chars)
        action = await self._agent.propose_action(
            prompt=prompt,
            ctx=RenderedContext(system_prompt=self._system_prompt),
            structured_output=ARCHIVIST_SUMMARY_SCHEMA,
        )

        try:
            payload = _SummaryPayload.model_validate(json.loads(action.content))
        except (json.JSONDecodeError, ValidationError) as e:
            raise GenerationError(f"Archivist returned an unusable summary: {e}") from e

        return ArchivistSummary(
            world_facts=payload.world_facts,
            memories=payload.memories,
            story_leads=payload.story_leads,
        )
