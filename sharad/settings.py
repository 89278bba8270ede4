from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class OrchestratorSettings:
    max_attempts: int = 3
    backoff_base_s: float = 0.5
    backoff_max_s: float = 8.0
    generation_timeout_s: float = 120.0
    # Number of recent messages included verbatim in every turn context.
    history_window: int = 10
    summary_max_chars: int = 4_000

    def backoff_for(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""

        return min(self.backoff_base_s * 2 ** (attempt - 1), self.backoff_max_s)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from e


def settings_from_env() -> OrchestratorSettings:
    s = OrchestratorSettings(
        max_attempts=_env_int("SHARAD_MAX_ATTEMPTS", 3),
        backoff_base_s=_env_float("SHARAD_BACKOFF_BASE_S", 0.5),
        backoff_max_s=_env_float("SHARAD_BACKOFF_MAX_S", 8.0),
        generation_timeout_s=_env_float("SHARAD_GENERATION_TIMEOUT_S", 120.0),
        history_window=_env_int("SHARAD_HISTORY_WINDOW", 10),
        summary_max_chars=_env_int("SHARAD_SUMMARY_MAX_CHARS", 4_000),
    )
    if s.max_attempts < 1:
        raise RuntimeError("SHARAD_MAX_ATTEMPTS must be at least 1")
    return s
