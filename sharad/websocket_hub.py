from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class SessionWebSocketHub:
    """In-process WebSocket pub/sub keyed by session_id.

    Contract:
      - attach a connection to a session via `connect(session_id, websocket)`.
      - push turn events with `broadcast(session_id, payload)`.

    Payloads must be JSON-serializable dicts. Across API replicas, clients should
    read the `turns:{session_id}` Redis stream instead.
    """

    def __init__(self) -> None:
        self._by_session: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._by_session[session_id].add(websocket)

    async def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_session.get(session_id)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_session.pop(session_id, None)

    async def broadcast(self, session_id: str, payload: dict[str, object]) -> int:
        """Send to every live socket of the session; returns how many received it."""

        async with self._lock:
            conns = list(self._by_session.get(session_id, set()))

        dead: list[WebSocket] = []
        delivered = 0
        for ws in conns:
            try:
                await ws.send_json(payload)
                delivered += 1
            except Exception:
                logger.debug("Dropping dead websocket for session %s", session_id, exc_info=True)
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._by_session.get(session_id, set()).discard(ws)
        return delivered


hub = SessionWebSocketHub()
