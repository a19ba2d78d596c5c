"""Typer CLI entrypoints for the Azure VM browser."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import structlog
import typer
from typer import Argument, Option

from azvm_cli.core.config import load_settings
from azvm_cli.core.context import ActionContext
from azvm_cli.core.exceptions import ConfigError
from azvm_cli.core.lifecycle import COMMAND_PREFIX
from azvm_cli.core.nodes import ResourceNode
from azvm_cli.extension import ExtensionContext, activate, deactivate
from azvm_cli.models import GlobalOptions, RunOptions, TreeOptions
from azvm_cli.prompts import ConsoleNotifier, QuestionaryUserInput
from azvm_cli.utils import configure_logging

logger = structlog.get_logger(__name__)

app = typer.Typer(help="Browse Azure virtual machines and run lifecycle commands")


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[bool, Option("--verbose", "-v", help="Enable verbose logging globally")] = False,
    config: Annotated[str | None, Option("--config", "-c", help="Configuration file path")] = None,
) -> None:
    options = GlobalOptions(verbose=verbose, config=Path(config) if config else None)
    try:
        settings = load_settings(options.config)
    except ConfigError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    configure_logging(options.verbose, settings.log_file)
    ctx.obj = (options, settings)


async def _activate_console(ctx: typer.Context) -> ExtensionContext:
    _options, settings = ctx.obj
    return await activate(settings, ui=QuestionaryUserInput(), notifier=ConsoleNotifier())


@app.command("commands", help="List registered command ids")
def list_commands(ctx: typer.Context) -> None:
    async def run() -> tuple[str, ...]:
        ext = await _activate_console(ctx)
        deactivate(ext)
        return ext.registry.command_ids

    for command_id in asyncio.run(run()):
        typer.echo(command_id)


def _format_node(node: ResourceNode) -> str:
    if node.description:
        return f"{node.label} [{node.description}]"
    return node.label


async def _print_tree(ext: ExtensionContext, options: TreeOptions) -> None:
    async def walk(context: ActionContext, node: ResourceNode, depth: int) -> None:
        children = await ext.tree.get_children(context, node)
        if options.all_pages:
            while node.expandable and not node.is_exhausted:
                await ext.tree.load_more(context, node)
            children = ext.tree.cached_children(node)
        for child in children:
            typer.echo(f"{'  ' * depth}{_format_node(child)}")
            if child.expandable and depth + 1 < options.depth:
                await walk(context, child, depth + 1)

    async def run(context: ActionContext) -> None:
        context.telemetry.properties["depth"] = str(options.depth)
        typer.echo(ext.tree.root.label)
        await walk(context, ext.tree.root, 0)

    await ext.runner.call_with_telemetry_and_error_handling(f"{COMMAND_PREFIX}.listTree", run)


@app.command("tree", help="Print the resource tree")
def tree_command(
    ctx: typer.Context,
    depth: Annotated[int, Option("--depth", "-d", help="Levels below the account to print")] = 3,
    all_pages: Annotated[bool, Option("--all-pages", help="Follow every continuation page")] = False,
) -> None:
    options = TreeOptions(depth=depth, all_pages=all_pages)

    async def run() -> None:
        ext = await _activate_console(ctx)
        try:
            await _print_tree(ext, options)
        finally:
            deactivate(ext)

    try:
        asyncio.run(run())
    except Exception as exc:
        raise typer.Exit(code=1) from exc


async def run_command(ext: ExtensionContext, options: RunOptions) -> None:
    """Reveal the target resource and invoke the command in one context."""

    async def run(context: ActionContext) -> None:
        args: list[ResourceNode] = []
        if options.resource_id:
            args.append(await ext.tree.find_node(context, options.resource_id))
        await ext.registry.execute(options.command_id, *args)

    await ext.runner.call_with_telemetry_and_error_handling(options.command_id, run)


@app.command("run", help="Invoke a registered command")
def run(
    ctx: typer.Context,
    command_id: Annotated[str, Argument(help="Command id, with or without the azureVirtualMachines. prefix")],
    resource_id: Annotated[str | None, Argument(help="Azure resource id to run the command against")] = None,
) -> None:
    options = RunOptions(command_id=command_id, resource_id=resource_id)

    async def invoke() -> None:
        ext = await _activate_console(ctx)
        try:
            if options.command_id not in ext.registry:
                raise typer.BadParameter(f"Unknown command '{options.command_id}'", param_hint="COMMAND_ID")
            await run_command(ext, options)
        finally:
            deactivate(ext)

    try:
        asyncio.run(invoke())
    except typer.BadParameter:
        raise
    except Exception as exc:
        raise typer.Exit(code=1) from exc


@app.command("browse", help="Open the interactive resource browser")
def browse(ctx: typer.Context) -> None:
    from azvm_cli.textual_app import run_textual_app  # Lazy import keeps Textual off the CLI path

    options, settings = ctx.obj
    raise typer.Exit(code=run_textual_app(settings, verbose=options.verbose))
