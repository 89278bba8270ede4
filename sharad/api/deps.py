from __future__ import annotations

import random
from collections.abc import Generator

import redis

from sharad.agents.factory import create_default_agent, create_default_imager
from sharad.agents.narrative import AgentNarrativeGenerator, render_tool_catalog
from sharad.agents.summarizer import AgentSummarizer
from sharad.core.context import BaseAgentContext
from sharad.infra.redis_client import create_redis
from sharad.orchestrator import Strategist
from sharad.prompts import load_prompt
from sharad.sessions import SessionRegistry
from sharad.settings import settings_from_env
from sharad.tool_handler import ToolHandler

_registry: SessionRegistry | None = None
_strategist: Strategist | None = None


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()


def get_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        settings = settings_from_env()
        _registry = SessionRegistry(
            summarizer=AgentSummarizer(agent=create_default_agent(name="archivist")),
            summary_max_chars=settings.summary_max_chars,
        )
    return _registry


def get_strategist() -> Strategist:
    global _strategist
    if _strategist is None:
        _strategist = Strategist(
            generator=AgentNarrativeGenerator(agent=create_default_agent(name="strategist")),
            handler=ToolHandler(rng=random.Random()),
            base=BaseAgentContext(system_prompt=load_prompt("strategist.txt"), tool_catalog=render_tool_catalog()),
            settings=settings_from_env(),
            imager=create_default_imager(),
        )
    return _strategist


async def close_registry() -> None:
    global _registry
    if _registry is not None:
        await _registry.close()
        _registry = None
