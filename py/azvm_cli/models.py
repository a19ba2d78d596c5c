"""Pydantic models for Typer CLI options."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from azvm_cli.core.lifecycle import COMMAND_PREFIX


class _BaseOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    verbose: bool = False


class GlobalOptions(_BaseOptions):
    config: Path | None = None

    @field_validator("config", mode="before")
    @classmethod
    def _expand_config(cls, value: str | Path | None) -> Path | None:
        if value is None:
            return None
        return Path(value).expanduser().resolve()


class TreeOptions(_BaseOptions):
    depth: int = Field(default=3, ge=1)
    all_pages: bool = False


class RunOptions(_BaseOptions):
    command_id: str = Field(min_length=1)
    resource_id: str | None = None

    @field_validator("command_id", mode="before")
    @classmethod
    def _qualify_command(cls, value: str) -> str:
        value = value.strip()
        if value and "." not in value:
            return f"{COMMAND_PREFIX}.{value}"
        return value

    @field_validator("resource_id", mode="before")
    @classmethod
    def _normalize_resource(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None
