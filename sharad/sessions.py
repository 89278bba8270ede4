from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sharad.agents.summarizer import Summarizer
from sharad.archivist import ContextArchivist
from sharad.core.messages import MessageLog
from sharad.models import ArchivistSummary, GameState, SavedSession

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class GameSession:
    """Live, in-process view of one game: state, message log and archivist.

    Only the orchestrator mutates `state`, and only while holding `turn_lock`.
    """

    session_id: UUID
    save_name: str
    created_at: datetime
    last_updated_at: datetime
    state: GameState
    log: MessageLog
    archivist: ContextArchivist | None = None
    # Summary restored from a save when no archivist is attached.
    restored_summary: ArchivistSummary | None = None
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def summary(self) -> ArchivistSummary | None:
        if self.archivist is not None:
            return self.archivist.summary
        return self.restored_summary

    @property
    def busy(self) -> bool:
        return self.turn_lock.locked()

    def touch(self) -> None:
        self.last_updated_at = _now()

    def to_saved(self) -> SavedSession:
        return SavedSession(
            session_id=self.session_id,
            save_name=self.save_name,
            created_at=self.created_at,
            last_updated_at=self.last_updated_at,
            state=self.state.model_copy(deep=True),
            messages=list(self.log.snapshot()),
            summary=self.summary,
        )

    @staticmethod
    def from_saved(saved: SavedSession) -> "GameSession":
        return GameSession(
            session_id=saved.session_id,
            save_name=saved.save_name,
            created_at=saved.created_at,
            last_updated_at=saved.last_updated_at,
            state=saved.state.model_copy(deep=True),
            log=MessageLog(saved.messages),
            restored_summary=saved.summary,
        )


class SessionRegistry:
    """In-process sessions keyed by id, each with its own archivist worker.

    Archivists are started lazily, so sessions must be created or adopted from
    within a running event loop when a summarizer is configured.
    """

    def __init__(self, *, summarizer: Summarizer | None = None, summary_max_chars: int = 4_000) -> None:
        self._summarizer = summarizer
        self._summary_max_chars = summary_max_chars
        self._sessions: dict[UUID, GameSession] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _attach_archivist(self, session: GameSession) -> None:
        if self._summarizer is None:
            return
        session.archivist = ContextArchivist(
            log=session.log,
            summarizer=self._summarizer,
            max_chars=self._summary_max_chars,
            initial=session.restored_summary,
        )
        session.archivist.start()

    def create(self, *, save_name: str) -> GameSession:
        now = _now()
        session = GameSession(
            session_id=uuid4(),
            save_name=save_name,
            created_at=now,
            last_updated_at=now,
            state=GameState(),
            log=MessageLog(),
        )
        self._attach_archivist(session)
        self._sessions[session.session_id] = session
        logger.info("Created session %s (%s)", session.session_id, save_name)
        return session

    def adopt(self, saved: SavedSession) -> GameSession:
        existing = self._sessions.get(saved.session_id)
        if existing is not None:
            return existing
        session = GameSession.from_saved(saved)
        self._attach_archivist(session)
        self._sessions[session.session_id] = session
        logger.info("Loaded session %s (%s) at turn %d", session.session_id, session.save_name, session.state.turn)
        return session

    async def reload(self, saved: SavedSession) -> GameSession:
        """Replace the live session with a newer save written by another process."""

        stale = self._sessions.pop(saved.session_id, None)
        if stale is not None and stale.archivist is not None:
            await stale.archivist.stop()
        session = self.adopt(saved)
        logger.info("Reloaded session %s from a newer save at turn %d", session.session_id, session.state.turn)
        return session

    def get(self, session_id: UUID) -> GameSession | None:
        return self._sessions.get(session_id)

    def all(self) -> list[GameSession]:
        return list(self._sessions.values())

    async def close(self) -> None:
        for session in self._sessions.values():
            if session.archivist is not None:
                await session.archivist.stop()
        self._sessions.clear()
