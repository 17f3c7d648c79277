from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

DATA_DIR = Path(__file__).parent / "data"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


class Settings(BaseModel):
    # Defaults are read from the environment and must pass the field constraints.
    model_config = ConfigDict(validate_default=True)

    database_path: Path = Field(
        default_factory=lambda: Path(os.getenv("ARENA_DB_PATH", "") or DATA_DIR / "arena.db")
    )

    llm_provider: str = Field(default_factory=lambda: os.getenv("LLM_PROVIDER", "anthropic"))
    llm_model: str = Field(default_factory=lambda: os.getenv("LLM_MODEL", ""))
    llm_timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("ARENA_LLM_TIMEOUT", "30")))

    matcher_workers: int = Field(default_factory=lambda: int(os.getenv("ARENA_MATCHER_WORKERS", "1")), ge=1)
    matcher_queue_size: int = Field(default_factory=lambda: int(os.getenv("ARENA_MATCHER_QUEUE_SIZE", "256")), ge=1)
    resume_matching: bool = Field(default_factory=lambda: _env_bool("ARENA_RESUME_MATCHING", True))

    min_idea_length: int = Field(default_factory=lambda: int(os.getenv("ARENA_MIN_IDEA_LENGTH", "10")), ge=1)
    log_level: str = Field(default_factory=lambda: os.getenv("ARENA_LOG_LEVEL", "INFO"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )
