from __future__ import annotations

import uuid
from contextlib import contextmanager

import redis

# Long enough to cover a turn with every generation retry exhausted.
DEFAULT_TURN_LOCK_TTL_MS = 600_000


class SessionBusyError(RuntimeError):
    pass


@contextmanager
def session_lock(*, r: redis.Redis, session_id: str, ttl_ms: int = DEFAULT_TURN_LOCK_TTL_MS):
    """Per-session lock shared by every API process.

    The value is a unique token so an expired holder cannot release a lock that
    has since been taken by someone else.
    """

    key = f"lock:session:{session_id}"
    token = uuid.uuid4().hex
    acquired = r.set(key, token, nx=True, px=ttl_ms)
    if not acquired:
        raise SessionBusyError("Session is busy")
    try:
        yield
    finally:
        if r.get(key) == token:
            r.delete(key)
