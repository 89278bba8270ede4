from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from fakes import game_response
from sharad.agents.base import AgentAction, JsonSchema
from sharad.agents.narrative import AgentNarrativeGenerator
from sharad.agents.summarizer import AgentSummarizer
from sharad.core.context import RenderedContext
from sharad.core.messages import Message
from sharad.errors import GenerationError
from sharad.models import ArchivistSummary


@dataclass
class _StructuredCapAgent:
    content: str = ""
    error: Exception | None = None
    name: str = "cap"
    seen_schema: JsonSchema | None = None
    seen: list[tuple[str, RenderedContext]] = field(default_factory=list)

    async def propose_action(self, *, prompt: str, ctx: RenderedContext, structured_output: JsonSchema | None = None) -> AgentAction:  # type: ignore[override]
        self.seen_schema = structured_output
        self.seen.append((prompt, ctx))
        if self.error is not None:
            raise self.error
        return AgentAction(kind="chat", content=self.content, metadata={})


async def test_narrative_generator_passes_game_response_schema() -> None:
    a = _StructuredCapAgent(content=game_response())
    ctx = RenderedContext(system_prompt="GM", user_prompt="PLAYER ACTION:\nHoi")

    text = await AgentNarrativeGenerator(agent=a).generate(ctx)

    assert text == game_response()
    assert a.seen_schema is not None
    assert a.seen_schema.name == "game_response"
    assert a.seen_schema.strict is False
    assert "crunch" in a.seen_schema.schema["properties"]
    assert a.seen[0][1] is ctx


async def test_narrative_generator_wraps_backend_errors() -> None:
    a = _StructuredCapAgent(error=ConnectionError("connection refused"))
    with pytest.raises(GenerationError, match="connection refused"):
        await AgentNarrativeGenerator(agent=a).generate(RenderedContext(system_prompt="GM"))


async def test_narrative_generator_rejects_empty_output() -> None:
    a = _StructuredCapAgent(content="   ")
    with pytest.raises(GenerationError, match="empty"):
        await AgentNarrativeGenerator(agent=a).generate(RenderedContext(system_prompt="GM"))


async def test_summarizer_passes_archivist_schema_and_parses_result() -> None:
    a = _StructuredCapAgent(content='{"world_facts":["Seattle, 2075"],"memories":["Met Mina"],"story_leads":[]}')
    summarizer = AgentSummarizer(agent=a, system_prompt="ARCHIVIST")
    previous = ArchivistSummary(memories=["Arrived in Redmond"])

    summary = await summarizer.summarize(
        previous=previous,
        messages=[Message(role="player", content="I talk to Mina.")],
        max_chars=500,
    )

    assert summary.memories == ["Met Mina"]
    assert a.seen_schema is not None
    assert a.seen_schema.name == "archivist_summary"
    prompt, ctx = a.seen[0]
    assert ctx.system_prompt == "ARCHIVIST"
    assert "Arrived in Redmond" in prompt
    assert "[player] I talk to Mina." in prompt
    assert "500 characters" in prompt


async def test_summarizer_rejects_malformed_payload() -> None:
    a = _StructuredCapAgent(content="not json")
    summarizer = AgentSummarizer(agent=a, system_prompt="ARCHIVIST")
    with pytest.raises(GenerationError):
        await summarizer.summarize(previous=None, messages=[], max_chars=500)
