"""structlog + Logfire setup shared by the CLI and the TUI.

Log lines go to stderr (the CLI prints trees and ids on stdout) or, for the
TUI, to a file. Every event logged while a command runs carries that
command's id.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import logfire
import structlog
import structlog.contextvars
from structlog.types import EventDict, Processor

from azvm_cli.core.context import current_context

_NOISY_LOGGERS = ("asyncio", "urllib3", "opentelemetry")

_logfire_ready = False


def _ensure_logfire() -> None:
    global _logfire_ready
    if _logfire_ready:
        return
    logfire.configure(send_to_logfire="if-token-present", service_name="azvm", console=False)
    logfire.instrument_pydantic()
    _logfire_ready = True


def add_command_id(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    """Tag the event with the id of the invocation running in this task."""
    context = current_context()
    if context is not None:
        event_dict.setdefault("command", context.callback_id)
    return event_dict


def _build_handler(log_file: Path | None) -> logging.Handler:
    if log_file is None:
        return logging.StreamHandler()
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(log_file, encoding="utf-8")


def configure_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Route structlog through stdlib logging and Logfire.

    ``verbose`` lowers the threshold to debug; colored console output is only
    used when logging to a terminal.
    """
    _ensure_logfire()

    handler = _build_handler(log_file)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=[handler], force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer: Processor
    if verbose and log_file is None:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.KeyValueRenderer(
            key_order=["timestamp", "level", "command", "event"],
            drop_missing=True,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_command_id,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            logfire.StructlogProcessor(),
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
