from __future__ import annotations

import os
from pathlib import Path


class PromptLoadError(RuntimeError):
    pass


def project_root() -> Path:
    # sharad/prompts.py -> sharad/ -> project root
    return Path(__file__).resolve().parents[1]


def prompts_dir() -> Path:
    """`SHARAD_PROMPTS_DIR` if set, else the repo `prompts/` directory."""

    override = os.environ.get("SHARAD_PROMPTS_DIR")
    return Path(override) if override else project_root() / "prompts"


def load_prompt(name: str) -> str:
    """Load a persona prompt, e.g. `load_prompt("strategist.txt")`."""

    path = prompts_dir() / name
    try:
        text = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError as e:
        raise PromptLoadError(f"Prompt not found: {path}") from e
    if not text:
        raise PromptLoadError(f"Prompt is empty: {path}")
    return text + "\n"
