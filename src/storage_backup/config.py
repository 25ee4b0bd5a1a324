from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, root_validator, validator
from croniter import croniter

DEFAULT_ENDPOINT_SUFFIX = "core.windows.net"
DEFAULT_SETTLE_DELAY_SECONDS = 1.0


class ConfigurationError(Exception):
    """Raised when the storage backup configuration is invalid."""


class SecretRef(BaseModel):
    """Reference to a secret stored in an environment variable or file."""

    value: Optional[str] = Field(default=None, description="Explicit secret string (discouraged).")
    env: Optional[str] = Field(default=None, description="Environment variable name.")
    file: Optional[Path] = Field(default=None, description="Path to a file containing the secret.")

    def resolve(self) -> Optional[str]:
        if self.value:
            return self.value
        if self.env:
            value = os.getenv(self.env)
            if value:
                return value
        if self.file:
            file_path = Path(self.file).expanduser()
            if file_path.exists():
                return file_path.read_text(encoding="utf-8").strip()
        return None


# --- Storage accounts --------------------------------------------------------


class AccountConfig(BaseModel):
    name: str
    key: SecretRef

    @validator("name")
    def _require_name(cls, value: str) -> str:  # noqa: N805
        if not value.strip():
            raise ValueError("Storage account name must not be blank.")
        return value

    def resolved_key(self) -> Optional[str]:
        return self.key.resolve()


AccountConfigMap = Dict[str, AccountConfig]


# --- azcopy ------------------------------------------------------------------


class AzCopyConfig(BaseModel):
    path: Optional[Path] = Field(default=None, description="Explicit path to the azcopy executable.")
    search_root: Optional[Path] = Field(default=None, description="Directory searched recursively for azcopy.")
    settle_delay_seconds: float = DEFAULT_SETTLE_DELAY_SECONDS
    endpoint_suffix: str = DEFAULT_ENDPOINT_SUFFIX

    @validator("path", "search_root")
    def _expand_path(cls, value: Optional[Path]) -> Optional[Path]:  # noqa: N805
        return value.expanduser() if value else value

    @validator("settle_delay_seconds")
    def _non_negative_delay(cls, value: float) -> float:  # noqa: N805
        if value < 0:
            raise ValueError("settle_delay_seconds must not be negative.")
        return value


# --- Job configuration -------------------------------------------------------


class DestinationConfig(BaseModel):
    account: str
    container: str
    sub_folder: Optional[str] = None


class JobConfig(BaseModel):
    name: str
    service: Literal["tables", "blobs"]
    source_account: str
    sources: List[str]
    destination: DestinationConfig
    timestamped: bool = Field(default=True, description="Add a batch timestamp segment to blob backups.")

    @validator("sources")
    def _require_sources(cls, value: List[str]) -> List[str]:  # noqa: N805
        if not value:
            raise ValueError("Job must define at least one source table or container.")
        return value


# --- Scheduling --------------------------------------------------------------


class SchedulerConfig(BaseModel):
    """Cron schedule for unattended backups; the file is re-read before each run."""

    cron: str
    timezone: str = "UTC"
    run_on_startup: bool = True

    @validator("cron")
    def _validate_cron(cls, value: str) -> str:  # noqa: N805
        if not croniter.is_valid(value):
            raise ValueError(f"'{value}' is not a valid cron expression for backup runs.")
        return value

    @validator("timezone")
    def _validate_timezone(cls, value: str) -> str:  # noqa: N805
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown scheduler timezone '{value}'.") from exc
        return value


class CoreConfig(BaseModel):
    jobs: List[JobConfig]
    accounts: AccountConfigMap
    azcopy: AzCopyConfig = AzCopyConfig()
    scheduler: Optional[SchedulerConfig] = None

    @validator("jobs")
    def _require_unique_jobs(cls, value: List[JobConfig]) -> List[JobConfig]:  # noqa: N805
        if not value:
            raise ValueError("At least one backup job must be configured.")
        names = [job.name for job in value]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate job name(s): {', '.join(duplicates)}.")
        return value

    @validator("accounts")
    def _require_accounts(cls, value: AccountConfigMap) -> AccountConfigMap:  # noqa: N805
        if not value:
            raise ValueError("At least one storage account must be configured.")
        return value

    @root_validator(skip_on_failure=True)
    def _ensure_job_accounts(cls, values: Dict[str, object]) -> Dict[str, object]:  # noqa: N805
        accounts: AccountConfigMap = values.get("accounts", {})
        jobs: List[JobConfig] = values.get("jobs", [])
        for job in jobs:
            for ref in (job.source_account, job.destination.account):
                if ref not in accounts:
                    raise ValueError(f"Job '{job.name}' references unknown account '{ref}'.")
        return values

    def account(self, name: str) -> AccountConfig:
        try:
            return self.accounts[name]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown account '{name}'") from exc


def load_config(path: Path) -> CoreConfig:
    """Read and validate a storage backup YAML file."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc

    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{path} is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")

    try:
        return CoreConfig.parse_obj(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{path}: {exc}") from exc
