"""Command-line entry points."""

from .cli import CallSimCLI, cli_main

__all__ = ["CallSimCLI", "cli_main"]
