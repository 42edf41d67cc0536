"""CLI commands for gatewrap."""

import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from gatewrap import __logo__, __version__

app = typer.Typer(
    name="gatewrap",
    help=f"{__logo__} gatewrap - Setup wizard and proxy for an OpenClaw gateway",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} gatewrap v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """gatewrap - Setup wizard and proxy for an OpenClaw gateway."""
    pass


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


# ============================================================================
# Serve
# ============================================================================


@app.command()
def serve(
    port: int = typer.Option(None, "--port", "-p", help="Public port (defaults to PORT)"),
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """Serve the setup wizard and proxy to the gateway."""
    import uvicorn

    from gatewrap.config.loader import repair_configs
    from gatewrap.config.schema import Settings
    from gatewrap.gateway.supervisor import GatewaySupervisor
    from gatewrap.gateway.token import TokenStore
    from gatewrap.server.app import create_app

    settings = Settings()
    if port:
        settings.port = port
    _configure_logging(verbose or settings.debug)

    token = TokenStore(settings).resolve()
    if repair_configs(settings, token.value):
        logger.info("Repaired persisted configuration")

    supervisor = GatewaySupervisor(settings, token.value)
    web_app = create_app(settings, supervisor, token)

    console.print(f"{__logo__} Starting gatewrap on port {settings.port}...")
    console.print(f"[green]✓[/green] Setup wizard: http://localhost:{settings.port}/setup")
    console.print(f"[green]✓[/green] Gateway target: {settings.gateway_target}")

    uv_config = uvicorn.Config(web_app, host=host, port=settings.port, log_level="debug" if verbose else "info")
    server = uvicorn.Server(uv_config)
    server.run()


# ============================================================================
# Token / Status
# ============================================================================


@app.command()
def token():
    """Show where the gateway token comes from (masked)."""
    from gatewrap.config.schema import Settings
    from gatewrap.gateway.token import TokenStore, mask_token

    settings = Settings()
    _configure_logging(settings.debug)
    resolved = TokenStore(settings).resolve()

    table = Table(title="Gateway token")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Source", resolved.source)
    table.add_row("Token", mask_token(resolved.value))
    table.add_row("Persisted", "[green]yes[/green]" if resolved.persisted else "[yellow]no[/yellow]")
    table.add_row("File", str(settings.token_path))
    console.print(table)


@app.command()
def status():
    """Show configuration status and paths."""
    from gatewrap.config.loader import is_configured
    from gatewrap.config.schema import Settings

    settings = Settings()
    configured = is_configured(settings.config_path)

    console.print(f"{__logo__} gatewrap status\n")
    console.print(
        f"Config: {settings.config_path} "
        f"{'[green]✓[/green]' if configured else '[red]✗ not configured[/red]'}"
    )
    console.print(f"State dir: {settings.state_path}")
    console.print(f"Workspace: {settings.workspace_path}")
    console.print(f"Gateway target: {settings.gateway_target}")
    console.print(f"Gateway entry: {settings.openclaw_node} {settings.openclaw_entry}")
    console.print(f"Setup password: {'[green]set[/green]' if settings.setup_password else '[red]not set[/red]'}")
    console.print(
        f"Token file: {settings.token_path} "
        f"{'[green]✓[/green]' if settings.token_path.exists() else '[dim]missing[/dim]'}"
    )


if __name__ == "__main__":
    app()
