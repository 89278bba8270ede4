from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, cast

import redis

from sharad.orchestrator import TurnResult


@dataclass(frozen=True, slots=True)
class TurnStream:
    session_id: str

    @property
    def key(self) -> str:
        return f"turns:{self.session_id}"


def publish(*, r: redis.Redis, stream: TurnStream, fields: Mapping[str, str]) -> str:
    # redis-py stubs expect field/value unions; we only use string fields/values.
    stream_id = r.xadd(stream.key, {str(k): str(v) for k, v in fields.items()})
    return cast(str, stream_id)


def turn_result_fields(result: TurnResult) -> dict[str, str]:
    return {
        "type": "turn_completed",
        "turn": str(result.turn),
        "applied": str(len(result.applied)),
        "rejected": str(len(result.rejected)),
        "result": result.model_dump_json(),
    }


def publish_turn_result(*, r: redis.Redis, session_id: str, result: TurnResult) -> str:
    return publish(r=r, stream=TurnStream(session_id=session_id), fields=turn_result_fields(result))


def read_turn_results(*, r: redis.Redis, session_id: str, count: int = 100) -> list[TurnResult]:
    """The latest `count` turns, oldest first."""

    entries = reversed(r.xrevrange(TurnStream(session_id=session_id).key, count=count))
    return [TurnResult.model_validate_json(fields["result"]) for _, fields in entries if "result" in fields]
