"""Image generation boundary.

Talks to an OpenAI-compatible `POST {base_url}/images/generations` endpoint and
returns the URL of the generated image. Failures surface as GenerationError; the
orchestrator reports them per request and never fails a turn on them.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from sharad.agents.autogen_config import OpenAICompatibleSettings, resolve_api_key
from sharad.errors import GenerationError

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
MAX_PROMPT_CHARS = 4_000

STYLE_PREAMBLE = (
    "Gritty cyberpunk character portrait in a Shadowrun setting, neon-lit, "
    "cinematic lighting, high detail.\n"
)


class ImageGenerator(Protocol):
    async def generate(self, prompt: str) -> str:  # pragma: no cover
        ...


class OpenAIImageClient:
    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str | None = None,
        size: str = "1024x1024",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = (base_url or OPENAI_BASE_URL).rstrip("/")
        self._size = size
        self._timeout = timeout
        self._transport = transport

    @staticmethod
    def from_settings(s: OpenAICompatibleSettings) -> "OpenAIImageClient":
        return OpenAIImageClient(model=s.image_model, api_key=resolve_api_key(s), base_url=s.base_url)

    def _body(self, prompt: str) -> dict[str, object]:
        full = (STYLE_PREAMBLE + prompt)[:MAX_PROMPT_CHARS]
        return {"model": self._model, "prompt": full, "n": 1, "size": self._size}

    async def generate(self, prompt: str) -> str:
        url = f"{self._base_url}/images/generations"
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        logger.debug("image request model=%s prompt_len=%d", self._model, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(url, json=self._body(prompt), headers=headers)
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GenerationError(f"Image backend returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise GenerationError(f"Image backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Cannot reach image backend at {self._base_url}: {e}") from e

        data = resp.json()
        items = data.get("data") if isinstance(data, dict) else None
        if not items or not isinstance(items[0], dict) or not items[0].get("url"):
            raise GenerationError("Unexpected response format from image backend")
        return str(items[0]["url"])
