"""Command registry and the telemetry/error-handling wrapper around it."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from azvm_cli.core.context import ActionContext, CancellationToken, UserInput, _current_context, current_context
from azvm_cli.core.errors import ErrorReporter
from azvm_cli.core.exceptions import DuplicateCommandError, UnknownCommandError
from azvm_cli.core.models import Classification, Outcome
from azvm_cli.core.telemetry import TelemetrySink, emit

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CommandHandler = Callable[..., Awaitable[Any]]


class ActionRunner:
    """Runs callbacks inside an :class:`ActionContext`.

    A callback started while another invocation is active in the same task
    reuses that invocation's context, so only the outermost call records
    telemetry and reports failures.
    """

    def __init__(self, *, ui: UserInput, reporter: ErrorReporter, telemetry: TelemetrySink) -> None:
        self._ui = ui
        self.reporter = reporter
        self._telemetry = telemetry

    async def call_with_telemetry_and_error_handling(
        self,
        callback_id: str,
        callback: Callable[[ActionContext], Awaitable[T]],
        *,
        token: CancellationToken | None = None,
    ) -> T | None:
        parent = current_context()
        if parent is not None:
            return await callback(parent)

        context = ActionContext(callback_id=callback_id, ui=self._ui, token=token or CancellationToken())
        marker = _current_context.set(context)
        started = time.monotonic()
        outcome = Outcome.SUCCESS
        logger.debug("command-start", command=callback_id)
        try:
            return await callback(context)
        except asyncio.CancelledError:
            outcome = Outcome.CANCELLED
            context.telemetry.properties["classification"] = Classification.USER_CANCELLED.value
            raise
        except Exception as exc:
            report = self.reporter.handle(context, exc)
            outcome = report.classification.outcome
            if report.classification is Classification.UNEXPECTED_ERROR and context.error_handling.rethrow:
                raise
            return None
        finally:
            _current_context.reset(marker)
            duration = time.monotonic() - started
            context.telemetry.properties["outcome"] = outcome.value
            context.telemetry.measurements["duration"] = duration
            emit(self._telemetry, callback_id, context.telemetry.properties, context.telemetry.measurements)
            logger.debug("command-end", command=callback_id, outcome=outcome.value, duration_sec=duration)

    def wrap(self, callback_id: str, handler: CommandHandler) -> Callable[..., Awaitable[Any]]:
        """Bind ``handler`` so each call runs inside the wrapper."""

        async def invoke(*args: Any, token: CancellationToken | None = None) -> Any:
            return await self.call_with_telemetry_and_error_handling(
                callback_id,
                lambda context: handler(context, *args),
                token=token,
            )

        return invoke


@dataclass(frozen=True)
class CommandEntry:
    command_id: str
    handler: CommandHandler
    invoke: Callable[..., Awaitable[Any]]


class CommandRegistry:
    """Explicit map from command id to its wrapped handler."""

    def __init__(self, runner: ActionRunner) -> None:
        self._runner = runner
        self._entries: dict[str, CommandEntry] = {}

    def register(self, command_id: str, handler: CommandHandler) -> CommandEntry:
        if command_id in self._entries:
            raise DuplicateCommandError(f"Command '{command_id}' is already registered")
        entry = CommandEntry(command_id=command_id, handler=handler, invoke=self._runner.wrap(command_id, handler))
        self._entries[command_id] = entry
        logger.debug("command-registered", command=command_id)
        return entry

    def command(self, command_id: str) -> Callable[[CommandHandler], CommandHandler]:
        def decorator(handler: CommandHandler) -> CommandHandler:
            self.register(command_id, handler)
            return handler

        return decorator

    def get(self, command_id: str) -> CommandEntry:
        try:
            return self._entries[command_id]
        except KeyError:
            raise UnknownCommandError(f"Command '{command_id}' is not registered") from None

    async def execute(self, command_id: str, *args: Any, token: CancellationToken | None = None) -> Any:
        return await self.get(command_id).invoke(*args, token=token)

    @property
    def command_ids(self) -> tuple[str, ...]:
        return tuple(sorted(self._entries))

    def __contains__(self, command_id: object) -> bool:
        return command_id in self._entries

    def __iter__(self) -> Iterator[CommandEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["ActionRunner", "CommandEntry", "CommandHandler", "CommandRegistry"]
