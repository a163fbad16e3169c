"""
Salesforce MCP CLI Entry Point

Responsibilities:
1. Bootstrap: apply --config, configure logging.
2. Validate the access policy (exit 2 when malformed).
3. Dispatch commands: serve, permissions, tools, version.

stdout belongs to the MCP transport while serving; everything human-facing
goes to stderr.
"""

from __future__ import annotations

import asyncio
import sys

import typer
from rich.console import Console
from rich.table import Table

from sfmcp import __version__
from sfmcp.core.errors import ConfigurationError
from sfmcp.core.permissions import ALLOW_ALL, AccessPolicy, load_access_policy
from sfmcp.foundation.config.logging import configure_logging
from sfmcp.foundation.config.settings import Settings, get_settings

err_console = Console(stderr=True)

app = typer.Typer(
    name="sf-mcp",
    help="Salesforce MCP Server - the sf CLI and REST API as MCP tools",
    no_args_is_help=True,
    add_completion=False,
)

EXIT_CONFIG_ERROR = 2


def _load_policy_or_exit() -> AccessPolicy:
    try:
        return load_access_policy()
    except ConfigurationError as e:
        err_console.print(f"[bold red]Configuration error:[/] {e.message}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from e


@app.callback()
def main_callback(
    config: str | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML settings file (overrides SF_MCP_CONFIG)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Load settings and configure logging."""
    if config:
        Settings.set_config_file(config)
    settings = get_settings()
    try:
        settings.reload()
    except (OSError, ValueError) as e:
        err_console.print(f"[bold red]Configuration error:[/] {e}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from e

    log_level = "DEBUG" if verbose else str(settings.get("logging.level", "INFO"))
    configure_logging(level=log_level, verbose=verbose, force=True)


@app.command()
def serve() -> None:
    """Run the MCP server over stdio."""
    from sfmcp.mcp.server import run_stdio_server

    policy = _load_policy_or_exit()
    try:
        asyncio.run(run_stdio_server(policy))
    except KeyboardInterrupt:
        err_console.print("[dim]Interrupted[/]")


@app.command()
def permissions() -> None:
    """Show the effective access policy."""
    policy = _load_policy_or_exit()

    table = Table(title="Access Policy", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Read-only", "[yellow]yes[/]" if policy.read_only else "no")
    if policy.allows_all:
        table.add_row("Allowed orgs", ALLOW_ALL)
    else:
        table.add_row("Allowed orgs", ", ".join(sorted(policy.allowed_targets)))
    err_console.print(table)


@app.command()
def tools() -> None:
    """List the operation catalog with its safety annotations."""
    from sfmcp.tools import build_registry

    table = Table(title="Operations")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Target")
    table.add_column("Kind")
    table.add_column("Dry-run")
    table.add_column("Phases")
    for descriptor in build_registry():
        if descriptor.destructive:
            kind = "[red]destructive[/]"
        elif descriptor.read_only:
            kind = "read"
        else:
            kind = "[yellow]mutating[/]"
        table.add_row(
            descriptor.name,
            descriptor.target,
            kind,
            descriptor.dry_run_field or "",
            str(len(descriptor.phases) or ""),
        )
    err_console.print(table)


@app.command()
def version() -> None:
    """Display version information."""
    python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    err_console.print(f"salesforce-mcp-server {__version__} (Python {python_version})")


def main() -> None:
    """Entry point for the `sf-mcp` console script."""
    app()


__all__ = ["app", "main"]
