"""Async runner for the Azure CLI."""

from __future__ import annotations

import asyncio
import json
import re
import shlex
from asyncio.subprocess import PIPE
from collections.abc import Sequence
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict

from azvm_cli.core.exceptions import CommandExecutionError, NotSignedInError, RemoteError

logger = structlog.get_logger(__name__)

_CODE_IN_PARENS = re.compile(r"^\s*(?:ERROR:\s*)?\((?P<code>[A-Za-z][A-Za-z0-9_.]*)\)\s*(?P<message>.*)$", re.MULTILINE)
_CODE_IN_JSON = re.compile(r'"code"\s*:\s*"(?P<code>[A-Za-z][A-Za-z0-9_.]*)"')
_MESSAGE_IN_JSON = re.compile(r'"message"\s*:\s*"(?P<message>(?:[^"\\]|\\.)*)"')
_NOT_SIGNED_IN_MARKERS = ("az login", "not logged in", "please run 'az login'")


class CommandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    stdout: str
    stderr: str
    returncode: int


def parse_cli_error(stderr: str) -> RemoteError:
    """Turn Azure CLI error output into a :class:`RemoteError`."""
    text = stderr.strip()
    lowered = text.lower()
    if any(marker in lowered for marker in _NOT_SIGNED_IN_MARKERS):
        return NotSignedInError()

    match = _CODE_IN_PARENS.search(text)
    if match:
        message = match.group("message").strip() or text
        return RemoteError(match.group("code"), message)

    code_match = _CODE_IN_JSON.search(text)
    if code_match:
        message_match = _MESSAGE_IN_JSON.search(text)
        message = message_match.group("message") if message_match else text
        return RemoteError(code_match.group("code"), message)

    first_line = text.splitlines()[0] if text else "Azure CLI command failed"
    return RemoteError(None, first_line.removeprefix("ERROR:").strip())


class AzureCLI:
    """Executes ``az`` commands and decodes their JSON output."""

    def __init__(self, executable: str = "az", *, timeout_seconds: float | None = None) -> None:
        self.executable = executable
        self.timeout_seconds = timeout_seconds

    async def run(self, args: Sequence[str], *, check: bool = True) -> CommandResult:
        command = [self.executable, *args]
        display = shlex.join(command)
        logger.debug("az-exec", command=display)
        try:
            process = await asyncio.create_subprocess_exec(*command, stdout=PIPE, stderr=PIPE)
        except FileNotFoundError as exc:
            raise CommandExecutionError(f"Azure CLI executable '{self.executable}' was not found") from exc
        try:
            if self.timeout_seconds is not None:
                async with asyncio.timeout(self.timeout_seconds):
                    stdout_bytes, stderr_bytes = await process.communicate()
            else:
                stdout_bytes, stderr_bytes = await process.communicate()
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            raise CommandExecutionError(f"Command timed out: {display}") from exc
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise
        stdout_text = stdout_bytes.decode(errors="replace") if stdout_bytes else ""
        stderr_text = stderr_bytes.decode(errors="replace") if stderr_bytes else ""
        return_code = process.returncode if process.returncode is not None else -1
        if check and return_code != 0:
            logger.debug("az-failed", command=display, returncode=return_code)
            raise parse_cli_error(stderr_text)
        return CommandResult(stdout=stdout_text, stderr=stderr_text, returncode=return_code)

    async def run_json(self, args: Sequence[str]) -> Any:
        result = await self.run([*args, "--output", "json"])
        if not result.stdout.strip():
            return None
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise CommandExecutionError(f"Azure CLI returned invalid JSON for {shlex.join(args)}: {exc}") from exc


__all__ = ["AzureCLI", "CommandResult", "parse_cli_error"]
