"""CLI commands for scribe."""

from __future__ import annotations

import typer

from scribe import __logo__

from .core import app, console, load_cli_config, make_memory_service, run_async

# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard() -> None:
    """Write default settings to ~/.scribe/settings.json."""
    from scribe.config.defaults import SETTINGS_KEY
    from scribe.config.loader import get_settings_path, read_settings_file, save_config
    from scribe.config.schema import Config

    settings_path = get_settings_path()

    if settings_path.exists() and SETTINGS_KEY in read_settings_file(settings_path):
        console.print(f"[yellow]Settings already exist at {settings_path}[/yellow]")
        if not typer.confirm("Overwrite? Stored memories are kept."):
            raise typer.Exit()

    save_config(Config(), settings_path)
    console.print(f"[green]✓[/green] Created settings at {settings_path}")

    console.print(f"\n{__logo__} scribe is ready!")
    console.print("\nNext steps:")
    console.print("  1. Set the summary model and key under [cyan]scribe.model[/cyan]")
    console.print("  2. Start the vector plugin: [cyan]scribe serve[/cyan]")
    console.print("  3. Check the backend: [cyan]scribe health[/cyan]")


# ============================================================================
# Vector plugin server
# ============================================================================


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address (default from settings)"),
    port: int = typer.Option(None, "--port", "-p", help="Port (default from settings)"),
) -> None:
    """Run the vector plugin server."""
    from scribe.server.app import run_server

    config = load_cli_config()
    server = config.server.model_copy(
        update={k: v for k, v in {"host": host, "port": port}.items() if v is not None}
    )
    console.print(f"{__logo__} Vector plugin on http://{server.host}:{server.port}{config.backend.plugin_path}")
    run_server(server, prefix=config.backend.plugin_path)


@app.command()
def health() -> None:
    """Check that the configured vector backend is reachable."""
    config = load_cli_config()
    service = make_memory_service(config)

    async def _check():
        try:
            return await service.health()
        finally:
            await service.close()

    status = run_async(_check())
    label = f"{config.backend.name} @ {config.backend.base_url}"
    if status.healthy:
        console.print(f"[green]✓[/green] {label}: {status.message}")
    else:
        console.print(f"[red]✗[/red] {label}: {status.message}")
        raise typer.Exit(1)


from . import memory_commands as _memory_commands  # noqa: E402,F401
