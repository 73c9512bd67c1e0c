"""
Runner configuration.

Settings come from (lowest to highest priority) defaults, an optional YAML
file, ``SUITERUNNER_``-prefixed environment variables, and explicit overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

DEFAULT_ENCRYPTION_KEY = "My32charPassword1234567890abcdef"
DEFAULT_ENCRYPTION_IV = "1234567890123456"

STANDARD_CONFIG_PATHS = (
    Path(".suiterunner/config.yaml"),
    Path(".suiterunner/config.yml"),
    Path("suiterunner.yaml"),
    Path("suiterunner.yml"),
)


class RunnerSettings(BaseSettings):
    """
    Environment-backed runner settings.

    Loads from environment variables with the SUITERUNNER_ prefix. The parallel
    suite limit also honours the bare MAX_PARALLEL_SUITES variable.
    """

    model_config = SettingsConfigDict(
        env_prefix="SUITERUNNER_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    suites_dir: Path = Path("testSuites")
    reports_dir: Path = Path("reports")
    artifacts_dir: Path = Path("artifacts")
    data_dir: Path = Path(".")
    env_dir: Path = Path(".")
    variables_file: Path = Path(".suiterunner/variables.json")

    max_parallel_suites: int = Field(
        default=2,
        ge=1,
        le=64,
        validation_alias=AliasChoices(
            "max_parallel_suites",
            "SUITERUNNER_MAX_PARALLEL_SUITES",
            "MAX_PARALLEL_SUITES",
        ),
    )
    headless: bool = True
    browser_type: str = "chromium"

    request_timeout_seconds: float = Field(default=30.0, gt=0)

    step_retry_attempts: int = Field(default=3, ge=1, le=10)
    step_retry_delay_ms: int = Field(default=1000, ge=0, le=60000)
    step_retry_backoff: float = Field(default=1.0, ge=1.0, le=4.0)
    assertion_timeout_ms: int = Field(default=5000, ge=0, le=300000)

    encryption_key: str = DEFAULT_ENCRYPTION_KEY
    encryption_iv: str = DEFAULT_ENCRYPTION_IV

    custom_step_modules: list[str] = Field(default_factory=list)
    persist_runtime_variables: bool = False

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key(cls, v: str) -> str:
        """AES-256 needs a 32 byte key."""
        if len(v.encode("utf-8")) != 32:
            raise ValueError("encryption_key must be exactly 32 bytes")
        return v

    @field_validator("encryption_iv")
    @classmethod
    def validate_encryption_iv(cls, v: str) -> str:
        """CTR mode needs a 16 byte initial counter block."""
        if len(v.encode("utf-8")) != 16:
            raise ValueError("encryption_iv must be exactly 16 bytes")
        return v

    @field_validator("custom_step_modules", mode="before")
    @classmethod
    def validate_modules(cls, v: Any) -> Any:
        """Accept a comma-separated string."""
        if isinstance(v, str):
            return [m.strip() for m in v.split(",") if m.strip()]
        return v


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def load_runner_config(
    config_file: Path | str | None = None,
    **overrides: Any,
) -> RunnerSettings:
    """
    Load runner configuration from file and/or environment.

    Priority (highest to lowest):
    1. Explicit keyword overrides (e.g. from CLI flags)
    2. Environment variables
    3. Config file (explicit path or a standard location)
    4. Defaults

    Args:
        config_file: Optional path to a YAML config file
        **overrides: Field values that win over every other source

    Returns:
        Validated RunnerSettings
    """
    file_config: dict[str, Any] = {}
    if config_file:
        config_path = Path(config_file)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        file_config = _read_yaml(config_path)
    else:
        for path in STANDARD_CONFIG_PATHS:
            if path.exists():
                file_config = _read_yaml(path)
                logger.debug("Loaded runner config file", path=str(path))
                break

    # Environment variables beat file values: only keep file keys that the
    # environment does not define.
    env_settings = RunnerSettings()
    env_defined = {
        name
        for name in RunnerSettings.model_fields
        if f"SUITERUNNER_{name.upper()}" in os.environ
        or (name == "max_parallel_suites" and "MAX_PARALLEL_SUITES" in os.environ)
    }
    merged = env_settings.model_dump()
    merged.update({k: v for k, v in file_config.items() if k not in env_defined})
    merged.update({k: v for k, v in overrides.items() if v is not None})

    return RunnerSettings.model_validate(merged)


def load_environment(env_dir: Path | str = ".") -> dict[str, str]:
    """
    Load ``.env`` then ``.env.<ENV>`` (default ``qa``) into the process env.

    Variables that are already set are never overridden.

    Returns:
        A snapshot copy of the process environment.
    """
    base = Path(env_dir)
    load_dotenv(base / ".env", override=False)
    env_name = os.environ.get("ENV", "qa")
    load_dotenv(base / f".env.{env_name}", override=False)
    return dict(os.environ)
