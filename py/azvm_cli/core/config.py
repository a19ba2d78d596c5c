"""TOML configuration loading for the Azure VM browser."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, cast

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from azvm_cli.core.exceptions import ConfigError

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/azvm/config.toml").expanduser()
DEFAULT_PORTAL_URL = "https://portal.azure.com"
DEFAULT_REPORT_ISSUE_URL = "https://github.com/microsoft/vscode-azurevirtualmachines/issues/new"


class Settings(BaseModel):
    """Process-wide settings, fixed once the application has started."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    page_size: int = Field(default=100, ge=1)
    suppress_report_issue: bool = True
    telemetry_enabled: bool = True
    az_path: str = "az"
    request_timeout_seconds: float = Field(default=120.0, gt=0)
    portal_url: str = DEFAULT_PORTAL_URL
    report_issue_url: str = DEFAULT_REPORT_ISSUE_URL
    log_file: Path | None = None

    @field_validator("portal_url", "report_issue_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_file", mode="before")
    @classmethod
    def _expand_log_file(cls, value: str | Path | None) -> Path | None:
        if value is None:
            return None
        return Path(value).expanduser()


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from TOML; a missing file yields the defaults."""
    config_path = path or DEFAULT_CONFIG_PATH
    try:
        with config_path.open("rb") as handle:
            data: dict[str, Any] = tomllib.load(handle)
    except FileNotFoundError:
        if path is not None:
            raise ConfigError(f"Configuration file '{config_path}' was not found") from None
        logger.debug("config-defaults", path=str(config_path))
        return Settings()
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Configuration file '{config_path}' is invalid: {exc}") from exc

    # Settings may live at the top level or under an [azvm] table
    section_raw = data.get("azvm", data)
    if not isinstance(section_raw, dict):
        raise ConfigError("[azvm] must be a table")
    section = cast(dict[str, Any], section_raw)

    try:
        settings = Settings(**section)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in '{config_path}': {exc}") from exc
    logger.debug("config-loaded", path=str(config_path))
    return settings


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_PORTAL_URL",
    "DEFAULT_REPORT_ISSUE_URL",
    "Settings",
    "load_settings",
]
