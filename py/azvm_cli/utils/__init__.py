"""Utility modules for the Azure VM browser."""

from azvm_cli.utils.logging import configure_logging
from azvm_cli.utils.process import AzureCLI, CommandResult, parse_cli_error

__all__ = [
    "AzureCLI",
    "CommandResult",
    "configure_logging",
    "parse_cli_error",
]
