"""Activation: builds the shared extension context and registers commands."""

from __future__ import annotations

import time
from dataclasses import dataclass

import structlog

from azvm_cli.core.commands import ActionRunner, CommandRegistry
from azvm_cli.core.config import Settings
from azvm_cli.core.context import ActionContext, Notifier, UserInput
from azvm_cli.core.errors import ErrorReporter, suppress_report_issue
from azvm_cli.core.lifecycle import COMMAND_PREFIX, VirtualMachineCommands
from azvm_cli.core.nodes import ResourceNode
from azvm_cli.core.remote import AzureResourceClient, ResourceClient
from azvm_cli.core.telemetry import LogfireTelemetrySink, NullTelemetrySink, TelemetrySink
from azvm_cli.core.tree import TreeDataProvider
from azvm_cli.utils.process import AzureCLI

logger = structlog.get_logger(__name__)

ACTIVATE_EVENT = f"{COMMAND_PREFIX}.activate"


@dataclass
class ExtensionContext:
    """Everything a front-end needs, built once per process by :func:`activate`."""

    settings: Settings
    cli: AzureCLI
    client: ResourceClient
    tree: TreeDataProvider
    reporter: ErrorReporter
    runner: ActionRunner
    registry: CommandRegistry
    ui: UserInput


def register_commands(ext: ExtensionContext) -> None:
    registry = ext.registry

    async def refresh(context: ActionContext, node: ResourceNode | str | None = None) -> None:
        await ext.tree.refresh(context, node)

    async def load_more(context: ActionContext, node: ResourceNode | str | None = None) -> None:
        await ext.tree.load_more(context, node)

    async def sign_in(context: ActionContext) -> None:
        await context.token.wait_for(ext.cli.run(["login"]), step="signIn")
        await ext.tree.refresh(context, None)

    async def show_output_channel(context: ActionContext) -> None:
        destination = str(ext.settings.log_file) if ext.settings.log_file else "standard error"
        await context.ui.show_text("Output", f"Logs are written to {destination}.")

    registry.register(f"{COMMAND_PREFIX}.refresh", refresh)
    registry.register(f"{COMMAND_PREFIX}.loadMore", load_more)
    registry.register(f"{COMMAND_PREFIX}.signIn", sign_in)
    registry.register(f"{COMMAND_PREFIX}.showOutputChannel", show_output_channel)
    VirtualMachineCommands(
        tree=ext.tree,
        client=ext.client,
        settings=ext.settings,
        reporter=ext.reporter,
    ).register(registry)


async def activate(
    settings: Settings,
    *,
    ui: UserInput,
    notifier: Notifier,
    client: ResourceClient | None = None,
    telemetry: TelemetrySink | None = None,
    cli: AzureCLI | None = None,
) -> ExtensionContext:
    started = time.monotonic()
    cli = cli or AzureCLI(settings.az_path, timeout_seconds=settings.request_timeout_seconds)
    if client is None:
        client = AzureResourceClient(cli, page_size=settings.page_size)
    if telemetry is None:
        telemetry = LogfireTelemetrySink() if settings.telemetry_enabled else NullTelemetrySink()

    reporter = ErrorReporter(notifier)
    runner = ActionRunner(ui=ui, reporter=reporter, telemetry=telemetry)
    ext = ExtensionContext(
        settings=settings,
        cli=cli,
        client=client,
        tree=TreeDataProvider(client),
        reporter=reporter,
        runner=runner,
        registry=CommandRegistry(runner),
        ui=ui,
    )

    async def run_activation(context: ActionContext) -> None:
        context.telemetry.properties["isActivationEvent"] = "true"
        register_commands(ext)
        # Suppress "Report an Issue" on every error in favor of the reportIssue command
        if settings.suppress_report_issue:
            reporter.register_error_handler(suppress_report_issue)
        reporter.freeze()
        context.telemetry.measurements["activationTime"] = time.monotonic() - started

    await runner.call_with_telemetry_and_error_handling(ACTIVATE_EVENT, run_activation)
    logger.debug("activated", commands=len(ext.registry))
    return ext


def deactivate(ext: ExtensionContext) -> None:
    ext.tree.dispose()


__all__ = ["ACTIVATE_EVENT", "ExtensionContext", "activate", "deactivate", "register_commands"]
