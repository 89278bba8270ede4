from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sharad.core.game_state_text import game_state_text
from sharad.core.messages import Message
from sharad.models import ArchivistSummary, GameState


@dataclass(frozen=True, slots=True)
class BaseAgentContext:
    """Global, shared instructions for the game-master persona."""

    system_prompt: str
    tool_catalog: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TurnContext:
    """Everything the generator sees for one turn. Discarded afterwards."""

    player_input: str
    recent_messages: tuple[Message, ...]
    summary: ArchivistSummary | None
    # Deep copy; the live state is never handed to the generator.
    state: GameState

    @staticmethod
    def build(
        *,
        player_input: str,
        recent_messages: tuple[Message, ...],
        summary: ArchivistSummary | None,
        state: GameState,
    ) -> "TurnContext":
        return TurnContext(
            player_input=player_input,
            recent_messages=recent_messages,
            summary=summary.model_copy(deep=True) if summary is not None else None,
            state=state.model_copy(deep=True),
        )


@dataclass(frozen=True, slots=True)
class RenderedContext:
    """Final, merged context passed into the LLM agent."""

    system_prompt: str
    user_prompt: str = ""

    def as_messages(self) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": self.system_prompt}]
        if self.user_prompt:
            messages.append({"role": "user", "content": self.user_prompt})
        return messages


def _render_messages(messages: tuple[Message, ...]) -> str:
    if not messages:
        return "RECENT MESSAGES:\n- (session just started)"
    lines = ["RECENT MESSAGES (oldest first):"]
    lines.extend(f"[{m.role}] {m.content.strip()}" for m in messages)
    return "\n".join(lines)


def compose_turn_context(*, base: BaseAgentContext, turn: TurnContext) -> RenderedContext:
    parts: list[str] = []
    parts.append(base.system_prompt.strip())

    if base.tool_catalog.strip():
        parts.append("AVAILABLE TOOLS:\n" + base.tool_catalog.strip())

    if turn.summary is not None:
        parts.append("ARCHIVIST SUMMARY:\n" + turn.summary.render())
    else:
        parts.append("ARCHIVIST SUMMARY:\n- (none yet)")

    parts.append(game_state_text(turn.state))
    parts.append(_render_messages(turn.recent_messages))

    system_prompt = "\n\n".join([p for p in parts if p.strip()]).strip()
    return RenderedContext(system_prompt=system_prompt, user_prompt="PLAYER ACTION:\n" + turn.player_input.strip())
