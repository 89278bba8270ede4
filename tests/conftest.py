from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path

import fakeredis
import pytest
from fastapi.testclient import TestClient

from fakes import ApiHarness, ScriptedDice, ScriptedGenerator
from sharad.sessions import SessionRegistry


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs so env-gated LLM tests can opt in.

    In CI, we don't auto-load `.env` unless SHARAD_LOAD_DOTENV_FOR_TESTS=1, so live
    integration tests stay skipped.
    """

    if os.environ.get("CI") and os.environ.get("SHARAD_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)

    # If using a local OpenAI-compatible endpoint, some clients require a key string.
    if os.environ.get("OPENAI_BASE_URL") and not os.environ.get("OPENAI_API_KEY"):
        os.environ["OPENAI_API_KEY"] = "ollama"


@pytest.fixture()
def api() -> Generator[ApiHarness, None, None]:
    """TestClient wired to fakeredis, a fresh registry and a scripted generator."""

    from sharad.api.deps import get_redis, get_registry, get_strategist
    from sharad.core.context import BaseAgentContext
    from sharad.main import app
    from sharad.orchestrator import Strategist
    from sharad.settings import OrchestratorSettings
    from sharad.tool_handler import ToolHandler

    r = fakeredis.FakeRedis(decode_responses=True)
    registry = SessionRegistry()
    generator = ScriptedGenerator([])
    dice = ScriptedDice([])
    strategist = Strategist(
        generator=generator,
        handler=ToolHandler(rng=dice),
        base=BaseAgentContext(system_prompt="You are the game master."),
        settings=OrchestratorSettings(max_attempts=2, backoff_base_s=0.0, backoff_max_s=0.0, generation_timeout_s=5.0),
    )

    def _override_redis() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override_redis
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_strategist] = lambda: strategist
    with TestClient(app) as c:
        yield ApiHarness(client=c, r=r, registry=registry, generator=generator, dice=dice)
    app.dependency_overrides.clear()
