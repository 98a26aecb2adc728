from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from croniter import CroniterBadCronError, croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_DESCRIPTION_TEMPLATE = (
    "This repository is automatically synced with the original repository. "
    "Last sync: {last_sync}"
)


class ConfigurationError(Exception):
    """Raised when the fork backup configuration is invalid."""


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# --- GitHub ------------------------------------------------------------------


class GitHubAuthConfig(_FrozenModel):
    token: Optional[str] = Field(default=None, description="Explicit token string (discouraged).")
    token_env: Optional[str] = Field(default=None, description="Environment variable containing token.")

    @model_validator(mode="after")
    def _require_secret(self) -> "GitHubAuthConfig":
        if not self.token and not self.token_env:
            raise ValueError("Either token or token_env must be provided for GitHub auth.")
        return self

    def resolved_token(self) -> Optional[str]:
        if self.token:
            return self.token
        if self.token_env:
            return os.getenv(self.token_env)
        return None


class GitHubConfig(_FrozenModel):
    organization: str
    auth: GitHubAuthConfig
    api_url: str = DEFAULT_API_URL
    timeout: float = 60.0
    rate_limit_threshold: int = 5

    @field_validator("organization")
    @classmethod
    def _require_organization(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("GitHub organization must not be empty.")
        return value


# --- Backups -----------------------------------------------------------------


class BackupConfig(_FrozenModel):
    directory: Path
    max_backups: int = 30
    check_for_changes: bool = True
    remove_orphans: bool = False
    description_template: str = DEFAULT_DESCRIPTION_TEMPLATE

    @field_validator("directory")
    @classmethod
    def _expand_directory(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("max_backups")
    @classmethod
    def _positive_retention(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_backups must be at least 1.")
        return value

    @field_validator("description_template")
    @classmethod
    def _validate_template(cls, value: str) -> str:
        try:
            value.format(last_sync="")
        except (KeyError, IndexError, ValueError) as exc:
            raise ValueError(f"Invalid description template: {exc}") from exc
        return value


class StatsConfig(_FrozenModel):
    enabled: bool = False
    repository: str = ".github"
    path: str = "profile/README.md"
    start_marker: str = "<!-- FORK-BACKUP-STATS:START -->"
    end_marker: str = "<!-- FORK-BACKUP-STATS:END -->"

    @model_validator(mode="after")
    def _distinct_markers(self) -> "StatsConfig":
        if not self.start_marker or not self.end_marker:
            raise ValueError("Stats markers must not be empty.")
        if self.start_marker == self.end_marker:
            raise ValueError("Stats start and end markers must differ.")
        return self


class LoggingConfig(_FrozenModel):
    verbose: bool = False
    path: Optional[Path] = None
    rotate_size: int = 10 * 1024 * 1024
    keep_rotated: int = 5

    @field_validator("path")
    @classmethod
    def _expand_path(cls, value: Optional[Path]) -> Optional[Path]:
        return value.expanduser() if value else value

    @field_validator("rotate_size", "keep_rotated")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Log rotation settings must not be negative.")
        return value


class SchedulerConfig(_FrozenModel):
    cron: str
    timezone: str = "UTC"
    run_on_startup: bool = True

    @field_validator("cron")
    @classmethod
    def _validate_cron(cls, value: str) -> str:
        try:
            croniter(value, datetime.now())
        except (CroniterBadCronError, ValueError) as exc:  # pragma: no cover - library errors
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc
        return value

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except ZoneInfoNotFoundError as exc:  # pragma: no cover - library errors
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value


class ForkBackupConfig(_FrozenModel):
    github: GitHubConfig
    backup: BackupConfig
    stats: StatsConfig = StatsConfig()
    logging: LoggingConfig = LoggingConfig()
    fail_fast: bool = False
    scheduler: Optional[SchedulerConfig] = None


def load_config(path: Path) -> ForkBackupConfig:
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {path}")

    try:
        return ForkBackupConfig.model_validate(raw)
    except Exception as exc:  # noqa: BLE001
        raise ConfigurationError(str(exc)) from exc
