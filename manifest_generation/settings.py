from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def get_env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean flag from environment variables."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def get_env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


def get_env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class CompilerSettings:
    """Tunables of the compilation pipeline.

    The tolerances and duration floors are plain parameters; nothing else in the
    pipeline depends on their literal values.
    """

    duration_tolerance: float = 0.01
    min_scene_seconds: float = 0.05
    min_normalized_seconds: float = 1.0
    default_duration: float = 60.0
    max_repair_rounds: int = 2
    enforce_generated_asset_jobs: bool = False
    extractor_enabled: bool = False
    repair_enabled: bool = False
    extractor_timeout: float = 3.0
    repair_timeout: float = 4.0
    llm_max_retries: int = 1
    render_callback_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "CompilerSettings":
        load_dotenv(PROJECT_ROOT / ".env")
        load_dotenv()  # load defaults if present
        return cls(
            duration_tolerance=get_env_float("MANIFEST_DURATION_TOLERANCE", cls.duration_tolerance),
            min_scene_seconds=get_env_float("MANIFEST_MIN_SCENE_SECONDS", cls.min_scene_seconds),
            min_normalized_seconds=get_env_float(
                "MANIFEST_MIN_NORMALIZED_SECONDS", cls.min_normalized_seconds
            ),
            default_duration=get_env_float("MANIFEST_DEFAULT_DURATION", cls.default_duration),
            max_repair_rounds=max(0, get_env_int("MANIFEST_MAX_REPAIR_ROUNDS", cls.max_repair_rounds)),
            enforce_generated_asset_jobs=get_env_flag("ENFORCE_GENERATED_ASSET_JOBS", False),
            extractor_enabled=get_env_flag("EXTRACTOR_ENABLED", False),
            repair_enabled=get_env_flag("REPAIR_ENABLED", False),
            extractor_timeout=get_env_float("EXTRACTOR_TIMEOUT_SECONDS", cls.extractor_timeout),
            repair_timeout=get_env_float("REPAIR_TIMEOUT_SECONDS", cls.repair_timeout),
            llm_max_retries=max(0, get_env_int("LLM_MAX_RETRIES", cls.llm_max_retries)),
            render_callback_url=os.getenv("RENDER_CALLBACK_URL") or None,
        )
