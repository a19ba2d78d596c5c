"""Unified Pydantic models for the Azure VM browser."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _FrozenModel(BaseModel):
    """Base model for immutable value objects."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class NodeKind(StrEnum):
    ACCOUNT = "account"
    SUBSCRIPTION = "subscription"
    RESOURCE_GROUP = "resourceGroup"
    VIRTUAL_MACHINE = "virtualMachine"
    GROUPING = "groupingNode"


class Outcome(StrEnum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    ERROR = "error"


class Classification(StrEnum):
    USER_CANCELLED = "userCancelled"
    KNOWN_ERROR = "knownError"
    UNEXPECTED_ERROR = "unexpectedError"
    FETCH_INCONSISTENCY = "fetchInconsistency"

    @property
    def outcome(self) -> Outcome:
        if self is Classification.USER_CANCELLED:
            return Outcome.CANCELLED
        return Outcome.ERROR


class Severity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# Remote Models


class ResourceItem(_FrozenModel):
    """One child entry returned by the remote API."""

    id: str
    name: str
    kind: NodeKind
    expandable: bool = True
    description: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)


class ResourcePage(_FrozenModel):
    """A page of children plus the continuation token for the next one."""

    items: tuple[ResourceItem, ...] = ()
    next_cursor: str | None = None

    @property
    def exhausted(self) -> bool:
        return self.next_cursor is None


# Reporting Models


class NotificationAction(_FrozenModel):
    """A remediation affordance attached to a notification."""

    title: str
    command_id: str | None = None
    url: str | None = None
    args: tuple[Any, ...] = ()

    @model_validator(mode="after")
    def _require_target(self) -> NotificationAction:
        if self.command_id is None and self.url is None:
            raise ValueError("An action needs either a command_id or a url")
        return self


class ErrorReport(_FrozenModel):
    """Outcome of classifying a single failure."""

    classification: Classification
    message: str
    severity: Severity | None = None
    actions: tuple[NotificationAction, ...] = ()

    @property
    def visible(self) -> bool:
        return self.severity is not None


__all__ = [
    "Classification",
    "ErrorReport",
    "NodeKind",
    "NotificationAction",
    "Outcome",
    "ResourceItem",
    "ResourcePage",
    "Severity",
]
