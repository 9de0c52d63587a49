from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .text import DEFAULT_LANGUAGE

DEFAULT_ENGINE_URL = "http://127.0.0.1:50021"
DEFAULT_SPEAKER_ID = 2
DEFAULT_RATE = 0.5


def default_home() -> Path:
    return Path.home() / ".lector"


@dataclass(slots=True)
class ReaderConfig:
    home: Path
    engine_url: str = DEFAULT_ENGINE_URL
    speaker: int = DEFAULT_SPEAKER_ID
    rate: float = DEFAULT_RATE
    language: str = DEFAULT_LANGUAGE
    ffplay_path: str = "ffplay"
    timeout: float = 30.0

    @property
    def library_dir(self) -> Path:
        return self.home / "library"

    @property
    def books_dir(self) -> Path:
        return self.home / "books"


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def load_config(env: Mapping[str, str] | None = None) -> ReaderConfig:
    """Build a config from ``LECTOR_*`` environment variables."""
    if env is None:
        env = os.environ
    home_raw = env.get("LECTOR_HOME")
    home = Path(home_raw).expanduser() if home_raw else default_home()
    return ReaderConfig(
        home=home,
        engine_url=env.get("LECTOR_ENGINE_URL") or DEFAULT_ENGINE_URL,
        speaker=_env_int(env, "LECTOR_SPEAKER", DEFAULT_SPEAKER_ID),
        rate=min(1.0, max(0.0, _env_float(env, "LECTOR_RATE", DEFAULT_RATE))),
        language=env.get("LECTOR_LANGUAGE") or DEFAULT_LANGUAGE,
        ffplay_path=env.get("LECTOR_FFPLAY") or "ffplay",
    )
