from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from sharad.core.messages import Message
from sharad.mechanics import derive
from sharad.models import ArchivistSummary, Character, GameState, SavedSession
from sharad.orchestrator import TurnResult


class SessionCreateRequest(BaseModel):
    save_name: str = Field("New game", min_length=1, max_length=100)


class TurnRequest(BaseModel):
    player_input: str = Field(..., min_length=1, max_length=4000)


class SessionView(BaseModel):
    session_id: UUID
    save_name: str
    created_at: datetime
    last_updated_at: datetime
    turn: int
    characters: list[str] = Field(default_factory=list)
    main_character: str | None = None
    message_count: int = 0

    @staticmethod
    def from_saved(saved: SavedSession) -> "SessionView":
        main = saved.state.main_character
        return SessionView(
            session_id=saved.session_id,
            save_name=saved.save_name,
            created_at=saved.created_at,
            last_updated_at=saved.last_updated_at,
            turn=saved.state.turn,
            characters=sorted(saved.state.characters),
            main_character=main.name if main is not None else None,
            message_count=len(saved.messages),
        )


class SessionDetail(SessionView):
    state: GameState
    messages: list[Message] = Field(default_factory=list)
    summary: ArchivistSummary | None = None

    @staticmethod
    def from_saved(saved: SavedSession) -> "SessionDetail":
        view = SessionView.from_saved(saved)
        return SessionDetail(
            **view.model_dump(),
            state=saved.state,
            messages=saved.messages,
            summary=saved.summary,
        )


class SessionListResponse(BaseModel):
    sessions: list[SessionView]


class DerivedView(BaseModel):
    physical_limit: int
    mental_limit: int
    social_limit: int
    physical_monitor: int
    stun_monitor: int
    initiative: int
    initiative_dice: int


class CharacterView(BaseModel):
    character: Character
    derived: DerivedView

    @staticmethod
    def of(character: Character) -> "CharacterView":
        d = derive(character)
        return CharacterView(
            character=character,
            derived=DerivedView(
                physical_limit=d.limits.physical,
                mental_limit=d.limits.mental,
                social_limit=d.limits.social,
                physical_monitor=d.monitors.physical,
                stun_monitor=d.monitors.stun,
                initiative=d.initiative,
                initiative_dice=d.initiative_dice,
            ),
        )


class TurnHistoryResponse(BaseModel):
    session_id: UUID
    turns: list[TurnResult]
