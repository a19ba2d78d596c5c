"""Textual TUI for browsing Azure virtual machines.

The app is a thin shell over the extension context: expanding a tree node
loads its children through the tree provider, selecting a "Load more..."
node fetches the next page, and key bindings invoke registered commands.
Every provider change event re-syncs the affected tree node.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

import structlog
from textual.app import App, ComposeResult
from textual.binding import BindingType
from textual.widgets import Footer, Header, Tree

from azvm_cli.core.config import Settings
from azvm_cli.core.context import ActionContext, CancellationToken
from azvm_cli.core.exceptions import UserCancelledError
from azvm_cli.core.lifecycle import COMMAND_PREFIX
from azvm_cli.core.models import NotificationAction, Severity
from azvm_cli.core.nodes import ResourceNode
from azvm_cli.core.remote import ResourceClient
from azvm_cli.core.telemetry import TelemetrySink
from azvm_cli.extension import ExtensionContext, activate, deactivate
from azvm_cli.textual_screens import ConfirmScreen, InputScreen, PickScreen, TextScreen
from azvm_cli.textual_widgets import ResourceTree

logger = structlog.get_logger(__name__)

DEFAULT_TUI_LOG = Path("~/.cache/azvm/azvm.log").expanduser()

_NOTIFY_SEVERITY = {
    Severity.INFO: "information",
    Severity.WARNING: "warning",
    Severity.ERROR: "error",
}


@dataclass(frozen=True)
class AppResult:
    """Result of the Textual application execution."""

    exit_code: int
    message: str | None = None


class TextualUserInput:
    """Prompt surface built on modal screens; must run inside a worker."""

    def __init__(self, app: App[Any]) -> None:
        self._app = app

    async def show_quick_pick(self, items: Sequence[str], *, placeholder: str) -> str:
        answer = await self._app.push_screen_wait(PickScreen(placeholder, items))
        if answer is None:
            raise UserCancelledError(placeholder)
        return answer

    async def show_input_box(self, prompt: str, *, default: str | None = None) -> str:
        answer = await self._app.push_screen_wait(InputScreen(prompt, default))
        if answer is None:
            raise UserCancelledError(prompt)
        return answer

    async def show_warning_message(self, message: str, *actions: str) -> str:
        answer = await self._app.push_screen_wait(ConfirmScreen(message, actions))
        if answer is None:
            raise UserCancelledError(message)
        return answer

    async def open_external(self, url: str) -> None:
        self._app.open_url(url)

    async def copy_to_clipboard(self, text: str) -> None:
        self._app.copy_to_clipboard(text)
        self._app.notify(f"Copied {text} to the clipboard")

    async def show_text(self, title: str, text: str) -> None:
        await self._app.push_screen_wait(TextScreen(title, text))


class TextualNotifier:
    """Shows classified failures as toast notifications."""

    def __init__(self, app: App[Any]) -> None:
        self._app = app

    def show(self, severity: Severity, message: str, actions: Sequence[NotificationAction]) -> None:
        lines = [message]
        for action in actions:
            target = action.url or action.command_id
            lines.append(f"{action.title}: {target}")
        self._app.notify("\n".join(lines), severity=_NOTIFY_SEVERITY[severity], timeout=10)  # type: ignore[arg-type]


class ResourceBrowserApp(App[None]):
    """Main Textual application showing the lazily loaded resource tree."""

    TITLE = "Azure Virtual Machines"

    CSS = """
    Screen {
        background: $surface;
    }
    ResourceBrowserApp {
        background: $surface;
    }
    ModalScreen {
        align: center middle;
    }
    .dialog {
        width: 80%;
        height: auto;
        max-height: 80%;
        border: thick $primary;
        background: $panel;
        padding: 1 2;
    }
    .title {
        text-style: bold;
        color: $primary;
    }
    .notice {
        color: $warning;
        text-style: bold;
    }
    .buttons {
        height: auto;
        margin-top: 1;
    }
    """

    BINDINGS: ClassVar[list[BindingType]] = [
        ("q", "quit", "Quit"),
        ("ctrl+c", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("s", "command('startVirtualMachine')", "Start"),
        ("x", "command('stopVirtualMachine')", "Stop"),
        ("t", "command('restartVirtualMachine')", "Restart"),
        ("d", "command('deleteVirtualMachine')", "Delete"),
        ("p", "command('viewProperties')", "Properties"),
        ("o", "command('openInPortal')", "Portal"),
        ("c", "command('copyIpAddress')", "Copy IP"),
        ("n", "command('createVirtualMachine')", "Create"),
        ("k", "command('addSshKey')", "SSH key"),
        ("h", "command('openInRemoteSsh')", "SSH"),
        ("escape", "cancel", "Cancel"),
    ]

    def __init__(
        self,
        settings: Settings,
        *,
        client: ResourceClient | None = None,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self._client = client
        self._telemetry = telemetry
        self.ext: ExtensionContext | None = None
        self._tokens: set[CancellationToken] = set()
        self._result: AppResult | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Footer()

    async def on_mount(self) -> None:
        self.ext = await activate(
            self.settings,
            ui=TextualUserInput(self),
            notifier=TextualNotifier(self),
            client=self._client,
            telemetry=self._telemetry,
        )
        resource_tree = ResourceTree(self.ext.tree.root, id="resources")
        await self.mount(resource_tree, before=self.query_one(Footer))
        self.ext.tree.add_change_listener(self._on_tree_changed)
        resource_tree.root.expand()
        resource_tree.focus()
        self._load_children(self.ext.tree.root)

    def on_unmount(self) -> None:
        if self.ext is not None:
            deactivate(self.ext)

    @property
    def resource_tree(self) -> ResourceTree:
        return self.query_one("#resources", ResourceTree)

    def _on_tree_changed(self, node: ResourceNode) -> None:
        if self.ext is None:
            return
        tree_node = self.resource_tree.sync_children(node, self.ext.tree.cached_children(node))
        if tree_node is not None and tree_node.is_expanded and not node.is_loaded and node.expandable:
            self._load_children(node)

    def _new_token(self) -> CancellationToken:
        token = CancellationToken()
        self._tokens.add(token)
        return token

    def _load_children(self, node: ResourceNode) -> None:
        self.run_worker(self._fetch_children(node), group="tree", exclusive=False)

    async def _fetch_children(self, node: ResourceNode) -> None:
        if self.ext is None:
            return
        ext = self.ext
        token = self._new_token()

        async def fetch(context: ActionContext) -> list[ResourceNode]:
            return await ext.tree.get_children(context, node)

        try:
            await ext.runner.call_with_telemetry_and_error_handling(
                f"{COMMAND_PREFIX}.getChildren", fetch, token=token
            )
        except Exception as exc:
            logger.debug("tree-load-rejected", node=node.id, error=str(exc))
        finally:
            self._tokens.discard(token)

    def on_tree_node_expanded(self, event: Tree.NodeExpanded[ResourceNode]) -> None:
        node = event.node.data
        if node is not None and node.expandable and not node.is_loaded:
            self._load_children(node)

    def on_tree_node_selected(self, event: Tree.NodeSelected[ResourceNode]) -> None:
        node = event.node.data
        if node is not None and node.is_load_more:
            self.invoke(f"{COMMAND_PREFIX}.loadMore", node)

    def invoke(self, command_id: str, *args: Any) -> None:
        """Run a registered command in a worker so it may prompt."""
        self.run_worker(self._invoke(command_id, *args), group="commands", exclusive=False)

    async def _invoke(self, command_id: str, *args: Any) -> None:
        if self.ext is None:
            return
        token = self._new_token()
        try:
            await self.ext.registry.execute(command_id, *args, token=token)
        except Exception as exc:
            # Already classified and shown by the reporter
            logger.debug("command-rejected", command=command_id, error=str(exc))
        finally:
            self._tokens.discard(token)

    def action_refresh(self) -> None:
        self.invoke(f"{COMMAND_PREFIX}.refresh", self.resource_tree.selected_resource)

    def action_command(self, name: str) -> None:
        self.invoke(f"{COMMAND_PREFIX}.{name}", self.resource_tree.selected_resource)

    def action_cancel(self) -> None:
        for token in list(self._tokens):
            token.cancel()

    async def action_quit(self) -> None:
        self.set_result(0)
        self.exit()

    def set_result(self, exit_code: int, message: str | None = None) -> None:
        self._result = AppResult(exit_code=exit_code, message=message)

    def get_result(self) -> AppResult:
        if self._result is None:
            raise RuntimeError("No result set for the application")
        return self._result


def run_textual_app(settings: Settings, *, verbose: bool = False) -> int:
    """Run the Textual application and return its exit code."""
    from azvm_cli.utils import configure_logging

    # Log lines on stderr would corrupt the screen
    configure_logging(verbose, settings.log_file or DEFAULT_TUI_LOG)
    app = ResourceBrowserApp(settings)
    try:
        app.run()
        return app.get_result().exit_code
    except Exception as exc:
        logger.error("Unexpected error in Textual app", exc_info=exc)
        return 2
