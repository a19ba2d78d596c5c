"""Centralized exception hierarchy for the Azure VM browser."""

from __future__ import annotations


class AzVmError(Exception):
    """Base exception for all azvm errors."""


class ConfigError(AzVmError):
    """Raised when the TOML configuration is invalid or cannot be loaded."""


class UserCancelledError(AzVmError):
    """Raised when the user dismisses a prompt or cancels an operation."""

    def __init__(self, step: str | None = None) -> None:
        super().__init__("Operation cancelled." if step is None else f"Operation cancelled at '{step}'.")
        self.step = step


class RemoteError(AzVmError):
    """Raised when the Azure management API returns an error."""

    def __init__(self, code: str | None, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class NotSignedInError(RemoteError):
    """Raised when the Azure CLI has no signed-in account."""

    def __init__(self, message: str = "You are not signed in to Azure.") -> None:
        super().__init__("NotSignedIn", message)


class PageFetchError(AzVmError):
    """Raised when fetching a page of children fails.

    The original failure is available as ``__cause__``.
    """

    def __init__(self, node_id: str, *, mid_pagination: bool, cause: BaseException) -> None:
        super().__init__(f"Failed to load children of '{node_id}': {cause}")
        self.node_id = node_id
        self.mid_pagination = mid_pagination


class DuplicateCommandError(AzVmError):
    """Raised when a command id is registered twice."""


class UnknownCommandError(AzVmError):
    """Raised when invoking a command id that was never registered."""


class NodeNotFoundError(AzVmError):
    """Raised when a resource id cannot be located in the tree."""


class CommandExecutionError(AzVmError):
    """Raised when a local CLI process fails or times out."""


class InvalidInputError(AzVmError):
    """Raised when a local file or value a command needs is unusable."""


__all__ = [
    "AzVmError",
    "CommandExecutionError",
    "ConfigError",
    "DuplicateCommandError",
    "InvalidInputError",
    "NodeNotFoundError",
    "NotSignedInError",
    "PageFetchError",
    "RemoteError",
    "UnknownCommandError",
    "UserCancelledError",
]
