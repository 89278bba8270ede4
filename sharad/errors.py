from __future__ import annotations

from collections.abc import Sequence


class SchemaValidationError(ValueError):
    """A proposed tool call does not match its operation contract."""

    def __init__(self, *, op: str, fields: Sequence[str] = (), message: str) -> None:
        self.op = op
        self.fields = list(fields)
        self.message = message
        where = f" (fields: {', '.join(self.fields)})" if self.fields else ""
        super().__init__(f"Invalid '{op}' payload{where}: {message}")


class GenerationError(RuntimeError):
    """The narrative generator failed, timed out, or returned unusable output."""


class StateError(ValueError):
    """Referenced entity is absent or a value falls outside what the state allows."""


class MechanicsError(ValueError):
    """Dice-roll parameters are malformed."""
