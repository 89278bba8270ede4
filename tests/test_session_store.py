from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import fakeredis
import pytest

from fakes import make_character
from sharad.core.messages import Message
from sharad.errors import StateError
from sharad.lock import SessionBusyError, session_lock
from sharad.models import ArchivistSummary, GameState, SavedSession
from sharad.operations import Fluff
from sharad.orchestrator import TurnResult
from sharad.session_store import delete_session, get_session, list_sessions, require_session, save_session
from sharad.streams import publish_turn_result, read_turn_results


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


def _saved(name: str = "Seattle run", *, updated: datetime | None = None) -> SavedSession:
    now = datetime.now(tz=UTC)
    alexei = make_character("Alexei")
    return SavedSession(
        session_id=uuid4(),
        save_name=name,
        created_at=now,
        last_updated_at=updated or now,
        state=GameState(characters={alexei.name: alexei}, turn=3),
        messages=[Message(role="player", content="Hoi"), Message(role="game", content="Narrator: Rain.")],
        summary=ArchivistSummary(world_facts=["Seattle, 2075"], covers_through=2),
    )


def test_save_then_load_round_trips(r: fakeredis.FakeRedis) -> None:
    saved = _saved()
    save_session(r=r, saved=saved, touch=False)

    loaded = get_session(r=r, session_id=saved.session_id)

    assert loaded == saved
    assert loaded.state.require_character("Alexei").skills.rating("Negotiation") == 3


def test_missing_session(r: fakeredis.FakeRedis) -> None:
    assert get_session(r=r, session_id=uuid4()) is None
    with pytest.raises(StateError, match="Session not found"):
        require_session(r=r, session_id=uuid4())


def test_list_sessions_newest_first(r: fakeredis.FakeRedis) -> None:
    now = datetime.now(tz=UTC)
    older = _saved("older", updated=now - timedelta(hours=1))
    newer = _saved("newer", updated=now)
    save_session(r=r, saved=older, touch=False)
    save_session(r=r, saved=newer, touch=False)

    assert [s.save_name for s in list_sessions(r=r)] == ["newer", "older"]


def test_save_touches_last_updated_at(r: fakeredis.FakeRedis) -> None:
    stale = datetime(2015, 1, 1, tzinfo=UTC)
    saved = _saved(updated=stale)
    save_session(r=r, saved=saved)

    assert require_session(r=r, session_id=saved.session_id).last_updated_at > stale


def test_delete_session(r: fakeredis.FakeRedis) -> None:
    saved = _saved()
    save_session(r=r, saved=saved)

    assert delete_session(r=r, session_id=saved.session_id) is True
    assert delete_session(r=r, session_id=saved.session_id) is False
    assert list_sessions(r=r) == []


def test_session_lock_is_exclusive_and_released(r: fakeredis.FakeRedis) -> None:
    with session_lock(r=r, session_id="s1"):
        with pytest.raises(SessionBusyError):
            with session_lock(r=r, session_id="s1"):
                pass
        # Other sessions are unaffected.
        with session_lock(r=r, session_id="s2"):
            pass

    with session_lock(r=r, session_id="s1"):
        pass


def test_session_lock_does_not_release_a_lock_it_no_longer_holds(r: fakeredis.FakeRedis) -> None:
    with session_lock(r=r, session_id="s1"):
        # Simulate expiry followed by another holder taking the lock.
        r.set("lock:session:s1", "someone-else")

    assert r.get("lock:session:s1") == "someone-else"


def test_turn_results_are_published_in_order(r: fakeredis.FakeRedis) -> None:
    fluff = Fluff.model_validate(
        {"speakers": [{"index": 0, "name": "Narrator"}], "dialogue": [{"speaker_index": 0, "text": "Rain."}]}
    )
    for turn in (1, 2):
        publish_turn_result(
            r=r,
            session_id="s1",
            result=TurnResult(turn=turn, player_input=f"input {turn}", crunch="", fluff=fluff),
        )

    results = read_turn_results(r=r, session_id="s1")

    assert [res.turn for res in results] == [1, 2]
    assert results[0].fluff.as_text() == "Narrator: Rain."
    assert read_turn_results(r=r, session_id="other") == []


def test_turn_history_returns_the_latest_turns_oldest_first(r: fakeredis.FakeRedis) -> None:
    fluff = Fluff.model_validate(
        {"speakers": [{"index": 0, "name": "Narrator"}], "dialogue": [{"speaker_index": 0, "text": "Rain."}]}
    )
    for turn in range(1, 6):
        publish_turn_result(
            r=r,
            session_id="s1",
            result=TurnResult(turn=turn, player_input=f"input {turn}", crunch="", fluff=fluff),
        )

    assert [res.turn for res in read_turn_results(r=r, session_id="s1", count=2)] == [4, 5]
