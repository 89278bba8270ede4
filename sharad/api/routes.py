from __future__ import annotations

import logging
from uuid import UUID

import redis
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from sharad.api.deps import get_redis, get_registry, get_strategist
from sharad.api.models import (
    CharacterView,
    SessionCreateRequest,
    SessionDetail,
    SessionListResponse,
    SessionView,
    TurnHistoryResponse,
    TurnRequest,
)
from sharad.errors import GenerationError
from sharad.infra.redis_client import ping
from sharad.lock import SessionBusyError, session_lock
from sharad.models import SavedSession
from sharad.orchestrator import Strategist, TurnResult
from sharad.session_store import get_session, list_sessions, save_session
from sharad.sessions import GameSession, SessionRegistry
from sharad.streams import publish_turn_result, read_turn_results
from sharad.websocket_hub import hub

logger = logging.getLogger(__name__)

router = APIRouter()


def _snapshot(*, r: redis.Redis, registry: SessionRegistry, session_id: UUID) -> SavedSession:
    saved = get_session(r=r, session_id=session_id)
    live = registry.get(session_id)
    # A live session is fresher than its last save unless another process has moved on.
    if live is not None and (saved is None or live.state.turn >= saved.state.turn):
        return live.to_saved()
    if saved is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return saved


def _live_session(*, r: redis.Redis, registry: SessionRegistry, session_id: UUID) -> GameSession:
    session = registry.get(session_id)
    if session is not None:
        return session
    saved = get_session(r=r, session_id=session_id)
    if saved is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return registry.adopt(saved)


async def _catch_up(*, r: redis.Redis, registry: SessionRegistry, session: GameSession) -> GameSession:
    # Must be called under the session lock, so the save cannot move underneath us.
    saved = get_session(r=r, session_id=session.session_id)
    if saved is None or saved.state.turn <= session.state.turn:
        return session
    logger.info("Session %s is behind its save (turn %d < %d)", session.session_id, session.state.turn, saved.state.turn)
    return await registry.reload(saved)


@router.websocket("/ws/sessions/{session_id}")
async def session_updates_ws(websocket: WebSocket, session_id: UUID) -> None:
    sid = str(session_id)
    await hub.connect(sid, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(sid, websocket)
    except Exception:
        await hub.disconnect(sid, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck(r: redis.Redis = Depends(get_redis)) -> dict[str, str]:
    return {"status": "ok", "redis": "ok" if ping(r) else "unreachable"}


@router.post("/sessions", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def create_session_route(
    payload: SessionCreateRequest,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.create(save_name=payload.save_name)
    saved = session.to_saved()
    save_session(r=r, saved=saved, touch=False)
    return SessionView.from_saved(saved)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions_route(r: redis.Redis = Depends(get_redis)) -> SessionListResponse:
    return SessionListResponse(sessions=[SessionView.from_saved(s) for s in list_sessions(r=r)])


@router.get("/sessions/{session_id}", response_model=SessionDetail)
async def get_session_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionDetail:
    return SessionDetail.from_saved(_snapshot(r=r, registry=registry, session_id=session_id))


@router.get("/sessions/{session_id}/characters/{name}", response_model=CharacterView)
async def get_character_route(
    session_id: UUID,
    name: str,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
) -> CharacterView:
    saved = _snapshot(r=r, registry=registry, session_id=session_id)
    character = saved.state.get_character(name)
    if character is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Character '{name}' not found")
    return CharacterView.of(character)


@router.post("/sessions/{session_id}/turns", response_model=TurnResult)
async def play_turn_route(
    session_id: UUID,
    payload: TurnRequest,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
    strategist: Strategist = Depends(get_strategist),
) -> TurnResult:
    session = _live_session(r=r, registry=registry, session_id=session_id)
    if session.busy:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session is busy")

    sid = str(session_id)
    try:
        with session_lock(r=r, session_id=sid):
            session = await _catch_up(r=r, registry=registry, session=session)
            result = await strategist.run_turn(session, payload.player_input)
            save_session(r=r, saved=session.to_saved())
    except SessionBusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except GenerationError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    publish_turn_result(r=r, session_id=sid, result=result)
    await hub.broadcast(
        sid,
        {
            "type": "turn_completed",
            "session_id": sid,
            "turn": result.turn,
            "result": result.model_dump(mode="json"),
        },
    )
    return result


@router.get("/sessions/{session_id}/turns", response_model=TurnHistoryResponse)
async def turn_history_route(
    session_id: UUID,
    count: int = Query(20, ge=1, le=200),
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
) -> TurnHistoryResponse:
    """Completed turns in order, read back from the session's Redis stream."""

    _snapshot(r=r, registry=registry, session_id=session_id)
    return TurnHistoryResponse(session_id=session_id, turns=read_turn_results(r=r, session_id=str(session_id), count=count))
