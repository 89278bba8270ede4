from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

import redis

from sharad.errors import StateError
from sharad.models import SavedSession

SESSIONS_SET_KEY = "sharad:sessions"
SESSION_KEY_PREFIX = "sharad:session:"  # + {uuid}


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _session_key(session_id: UUID) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def save_session(*, r: redis.Redis, saved: SavedSession, touch: bool = True) -> None:
    if touch:
        saved.last_updated_at = _now()
    pipe = r.pipeline()
    pipe.set(_session_key(saved.session_id), saved.model_dump_json())
    pipe.sadd(SESSIONS_SET_KEY, str(saved.session_id))
    pipe.execute()


def get_session(*, r: redis.Redis, session_id: UUID) -> SavedSession | None:
    raw = r.get(_session_key(session_id))
    if not raw:
        return None
    return SavedSession.model_validate_json(raw)


def require_session(*, r: redis.Redis, session_id: UUID) -> SavedSession:
    saved = get_session(r=r, session_id=session_id)
    if saved is None:
        raise StateError("Session not found")
    return saved


def delete_session(*, r: redis.Redis, session_id: UUID) -> bool:
    pipe = r.pipeline()
    pipe.delete(_session_key(session_id))
    pipe.srem(SESSIONS_SET_KEY, str(session_id))
    deleted, _ = pipe.execute()
    return bool(deleted)


def list_sessions(*, r: redis.Redis) -> list[SavedSession]:
    """All saved sessions, most recently updated first."""

    out: list[SavedSession] = []
    for sid in sorted(r.smembers(SESSIONS_SET_KEY)):
        try:
            session_id = UUID(sid)
        except ValueError:
            continue
        saved = get_session(r=r, session_id=session_id)
        if saved is not None:
            out.append(saved)
    out.sort(key=lambda s: s.last_updated_at, reverse=True)
    return out
