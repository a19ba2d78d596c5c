"""Questionary-based prompt surface and console notifications."""

from __future__ import annotations

from collections.abc import Sequence

import questionary
import structlog
import typer

from azvm_cli.core.exceptions import UserCancelledError
from azvm_cli.core.models import NotificationAction, Severity

logger = structlog.get_logger(__name__)

_SEVERITY_COLORS = {
    Severity.INFO: typer.colors.CYAN,
    Severity.WARNING: typer.colors.YELLOW,
    Severity.ERROR: typer.colors.RED,
}


class QuestionaryUserInput:
    """Terminal prompts; an aborted prompt raises :class:`UserCancelledError`."""

    async def show_quick_pick(self, items: Sequence[str], *, placeholder: str) -> str:
        if not items:
            raise UserCancelledError(placeholder)
        response = await questionary.select(placeholder, choices=list(items)).ask_async()
        if response is None:
            raise UserCancelledError(placeholder)
        return str(response)

    async def show_input_box(self, prompt: str, *, default: str | None = None) -> str:
        while True:
            response = await questionary.text(prompt, default=default or "").ask_async()
            if response is None:
                raise UserCancelledError(prompt)
            result = response.strip()
            if result:
                return result
            questionary.print("Value is required.", style="bold red")

    async def show_warning_message(self, message: str, *actions: str) -> str:
        if len(actions) == 1:
            confirmed = await questionary.confirm(f"{message} ({actions[0]})", default=False).ask_async()
            if not confirmed:
                raise UserCancelledError(message)
            return actions[0]
        choices = [*actions, "Cancel"]
        response = await questionary.select(message, choices=choices).ask_async()
        if response is None or response == "Cancel":
            raise UserCancelledError(message)
        return str(response)

    async def open_external(self, url: str) -> None:
        typer.echo(url)
        if typer.launch(url) != 0:
            logger.warning("open-external-failed", url=url)

    async def copy_to_clipboard(self, text: str) -> None:
        # No clipboard access in a plain terminal
        typer.echo(text)

    async def show_text(self, title: str, text: str) -> None:
        typer.secho(title, bold=True)
        typer.echo(text)


class ConsoleNotifier:
    """Prints notifications to stderr along with their remediation actions."""

    def show(self, severity: Severity, message: str, actions: Sequence[NotificationAction]) -> None:
        typer.secho(f"{severity.value.upper()}: {message}", fg=_SEVERITY_COLORS[severity], err=True)
        for action in actions:
            target = action.url or " ".join(["azvm run", str(action.command_id), *map(str, action.args)])
            typer.secho(f"  -> {action.title}: {target}", err=True)


__all__ = ["ConsoleNotifier", "QuestionaryUserInput"]
