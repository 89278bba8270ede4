from __future__ import annotations

from typing import cast

from sharad.agents.ag2_backend import Ag2ChatAgent
from sharad.agents.autogen_config import settings_from_env
from sharad.agents.base import Agent
from sharad.agents.imager import ImageGenerator, OpenAIImageClient


def create_default_agent(*, name: str) -> Agent:
    """Create the default LLM-backed agent.

    Currently uses AG2/autogen and reads model configuration from env.
    """

    return cast(Agent, Ag2ChatAgent(name=name, model=settings_from_env().model))


def create_default_imager() -> ImageGenerator | None:
    """Image client from env, or None when no OpenAI-compatible endpoint is configured."""

    s = settings_from_env()
    if not (s.api_key or s.base_url):
        return None
    return OpenAIImageClient.from_settings(s)
