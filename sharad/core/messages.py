from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

MessageRole = Literal["player", "game", "system"]


def _now() -> datetime:
    return datetime.now(tz=UTC)


class Message(BaseModel):
    role: MessageRole
    content: str
    ts: datetime = Field(default_factory=_now)


Listener = Callable[[Message], None]


class MessageLog:
    """Append-only, ordered message history for one session.

    Listeners are invoked synchronously on every append; they must not block
    (the archivist only flips an event and returns).
    """

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: list[Message] = list(messages)
        self._listeners: list[Listener] = []

    def __len__(self) -> int:
        return len(self._messages)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def append(self, message: Message) -> None:
        self._messages.append(message)
        for listener in list(self._listeners):
            listener(message)

    def recent(self, n: int) -> tuple[Message, ...]:
        """Last `n` messages, most recent last."""

        if n <= 0:
            return ()
        return tuple(self._messages[-n:])

    def snapshot(self, upto: int | None = None) -> tuple[Message, ...]:
        end = len(self._messages) if upto is None else upto
        return tuple(self._messages[:end])
