"""Per-invocation execution context shared by nested operations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from azvm_cli.core.exceptions import UserCancelledError
from azvm_cli.core.models import NotificationAction, Severity

T = TypeVar("T")


class UserInput(Protocol):
    """Prompt surface offered to command handlers."""

    async def show_quick_pick(self, items: Sequence[str], *, placeholder: str) -> str: ...

    async def show_input_box(self, prompt: str, *, default: str | None = None) -> str: ...

    async def show_warning_message(self, message: str, *actions: str) -> str: ...

    async def open_external(self, url: str) -> None: ...

    async def copy_to_clipboard(self, text: str) -> None: ...

    async def show_text(self, title: str, text: str) -> None: ...


class Notifier(Protocol):
    """Non-blocking user notification sink."""

    def show(self, severity: Severity, message: str, actions: Sequence[NotificationAction]) -> None: ...


class CancellationToken:
    """Cooperative cancellation signal checked at every suspension point."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        for callback in self._callbacks:
            callback()
        self._callbacks.clear()

    def on_cancelled(self, callback: Callable[[], None]) -> None:
        if self._event.is_set():
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self, step: str | None = None) -> None:
        if self._event.is_set():
            raise UserCancelledError(step)

    async def wait_for(self, awaitable: Awaitable[T], *, step: str | None = None) -> T:
        """Await ``awaitable`` unless cancellation is requested first.

        A future passed in by the caller is shared and never cancelled here;
        a bare coroutine is wrapped in a task that is cancelled on abandon.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise UserCancelledError(step)
        owned = not asyncio.isfuture(awaitable)
        future = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({future, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            if owned:
                future.cancel()
            raise
        finally:
            cancelled.cancel()
        if future.done():
            return future.result()
        if owned:
            future.cancel()
        raise UserCancelledError(step)


@dataclass
class TelemetryData:
    properties: dict[str, str] = field(default_factory=dict)
    measurements: dict[str, float] = field(default_factory=dict)


@dataclass
class ErrorHandlingOptions:
    suppress_display: bool = False
    suppress_report_issue: bool = False
    rethrow: bool = True
    issue_properties: dict[str, str] = field(default_factory=dict)
    notified: set[tuple[Severity, str]] = field(default_factory=set)


@dataclass
class ActionContext:
    """Bundle of telemetry, cancellation and prompting for one invocation."""

    callback_id: str
    ui: UserInput
    token: CancellationToken = field(default_factory=CancellationToken)
    telemetry: TelemetryData = field(default_factory=TelemetryData)
    error_handling: ErrorHandlingOptions = field(default_factory=ErrorHandlingOptions)

    def set_properties(self, values: Mapping[str, Any]) -> None:
        self.telemetry.properties.update({key: str(value) for key, value in values.items()})


_current_context: ContextVar[ActionContext | None] = ContextVar("azvm_action_context", default=None)


def current_context() -> ActionContext | None:
    """Return the context of the invocation running in this task, if any."""
    return _current_context.get()


__all__ = [
    "ActionContext",
    "CancellationToken",
    "ErrorHandlingOptions",
    "Notifier",
    "TelemetryData",
    "UserInput",
    "current_context",
]
