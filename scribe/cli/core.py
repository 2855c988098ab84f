"""Shared CLI application context and setup helpers."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, TypeVar

import typer
from rich.console import Console

from scribe import __logo__, __version__

T = TypeVar("T")

app = typer.Typer(
    name="scribe",
    help=f"{__logo__} scribe - Long-term chat memory through turn summaries",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__logo__} scribe v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
) -> None:
    """scribe - Long-term chat memory through turn summaries."""
    load_env_file()


def load_env_file() -> None:
    """Load `.env` from the scribe home; existing environment variables win."""
    from dotenv import load_dotenv

    from scribe.utils.helpers import get_data_path

    load_dotenv(get_data_path() / ".env", override=False)


def load_cli_config():
    """Load config, exiting with a readable message when it is invalid."""
    from pydantic import ValidationError

    from scribe.config.loader import load_config

    try:
        return load_config()
    except ValidationError as e:
        console.print(f"[red]Invalid settings:[/red] {e}")
        raise typer.Exit(1)


def make_memory_service(config: Any):
    """Create a memory service bound to the settings file. Exits on an unknown backend."""
    from scribe.backends.base import UnknownBackendError
    from scribe.memory.service import MemoryService

    try:
        return MemoryService(config)
    except UnknownBackendError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)
