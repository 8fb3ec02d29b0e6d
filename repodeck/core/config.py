"""Unified configuration via pydantic-settings."""

import shutil
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_FALLBACK_GIT_PATH = Path("/usr/bin/git")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def resolve_git_path() -> Path:
    """Locate git on PATH, falling back to the usual system location."""
    found = shutil.which("git")
    return Path(found) if found else _FALLBACK_GIT_PATH


class RepoDeckConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REPODECK_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # git executable
    git_path: Path = Field(default_factory=resolve_git_path)
    output_locale: str = "C"

    # Working trees supplied by the directory scanner (or the CLI)
    repositories: Annotated[list[Path], NoDecode] = []

    # Subprocess supervision
    poll_interval_seconds: float = 0.05
    flush_grace_seconds: float = 0.25

    # Logging
    log_level: str = "INFO"
    # Terminal output stays quiet unless asked; the log file gets log_level.
    console_log_level: str = "WARNING"
    log_dir: Path | None = None
    log_max_bytes: int = 10_485_760
    log_backup_count: int = 5

    @field_validator("git_path")
    @classmethod
    def expand_git_path(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator("repositories", mode="before")
    @classmethod
    def parse_repositories(cls, v: list[Path] | str | Path) -> list[Path]:
        if isinstance(v, Path):
            return [v]
        if isinstance(v, str):
            return [Path(p.strip()) for p in v.split(",") if p.strip()]
        return v

    @field_validator("repositories")
    @classmethod
    def resolve_repositories(cls, v: list[Path]) -> list[Path]:
        resolved = []
        for p in v:
            r = p.expanduser().resolve()
            if not r.is_dir():
                raise ValueError(f"repository directory does not exist: {r}")
            resolved.append(r)
        return resolved

    @field_validator("log_level", "console_log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("poll_interval_seconds", "flush_grace_seconds")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v
