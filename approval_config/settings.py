"""
Runtime settings read from the environment.

    APPROVAL_DATABASE_URL    SQLAlchemy URL (default: local SQLite file)
    APPROVAL_WORKFLOWS_PATH  workflow YAML (default: the packaged file)
    APPROVAL_LOG_LEVEL       log level name (default: INFO)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from approval_config.loader import DEFAULT_WORKFLOWS_PATH

DEFAULT_DATABASE_URL = "sqlite:///approval_kernel.db"


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    workflows_path: Path = DEFAULT_WORKFLOWS_PATH
    log_level: str = "INFO"

    def __post_init__(self):
        level = str(self.log_level).strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {self.log_level!r}")
        object.__setattr__(self, "log_level", level)
        object.__setattr__(self, "workflows_path", Path(self.workflows_path))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get("APPROVAL_DATABASE_URL") or DEFAULT_DATABASE_URL,
            workflows_path=Path(env.get("APPROVAL_WORKFLOWS_PATH") or DEFAULT_WORKFLOWS_PATH),
            log_level=env.get("APPROVAL_LOG_LEVEL") or "INFO",
        )
