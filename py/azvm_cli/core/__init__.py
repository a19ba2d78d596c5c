"""Core engine: command dispatch, error classification and the resource tree.

The tree provider and the remote client live in ``azvm_cli.core.tree`` and
``azvm_cli.core.remote``; they depend on ``azvm_cli.utils`` and are imported
from there directly.
"""

from azvm_cli.core.commands import ActionRunner, CommandEntry, CommandRegistry
from azvm_cli.core.config import DEFAULT_CONFIG_PATH, Settings, load_settings
from azvm_cli.core.context import ActionContext, CancellationToken, Notifier, UserInput, current_context
from azvm_cli.core.errors import ErrorClassifier, ErrorReporter
from azvm_cli.core.exceptions import (
    AzVmError,
    CommandExecutionError,
    ConfigError,
    DuplicateCommandError,
    NodeNotFoundError,
    NotSignedInError,
    PageFetchError,
    RemoteError,
    UnknownCommandError,
    UserCancelledError,
)
from azvm_cli.core.models import (
    Classification,
    ErrorReport,
    NodeKind,
    NotificationAction,
    Outcome,
    ResourceItem,
    ResourcePage,
    Severity,
)
from azvm_cli.core.telemetry import LogfireTelemetrySink, NullTelemetrySink, TelemetrySink

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ActionContext",
    "ActionRunner",
    "AzVmError",
    "CancellationToken",
    "Classification",
    "CommandEntry",
    "CommandExecutionError",
    "CommandRegistry",
    "ConfigError",
    "DuplicateCommandError",
    "ErrorClassifier",
    "ErrorReport",
    "ErrorReporter",
    "LogfireTelemetrySink",
    "NodeKind",
    "NodeNotFoundError",
    "NotSignedInError",
    "NotificationAction",
    "Notifier",
    "NullTelemetrySink",
    "Outcome",
    "PageFetchError",
    "RemoteError",
    "ResourceItem",
    "ResourcePage",
    "Settings",
    "Severity",
    "TelemetrySink",
    "UnknownCommandError",
    "UserCancelledError",
    "UserInput",
    "current_context",
    "load_settings",
]
