"""Main CLI implementation using Typer."""

import asyncio
from pathlib import Path
from typing import Callable, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from ruamel.yaml.error import YAMLError

from scvmm.cli.commands import (
    delete_machine,
    list_machines,
    reconcile_machine,
    show_status,
    validate_config,
)
from scvmm.controller.config import ConfigManager
from scvmm.controller.main import run_agent
from scvmm.controller.provider import ConfigurationError
from scvmm.controller.result import ReconcileError
from scvmm.controller.store import FileStore, StoreError
from scvmm.remote.library import LibraryError
from scvmm.remote.session import TransportError
from scvmm.utils.logging import setup_logging


app = typer.Typer(
    name="scvmmctl",
    help="SCVMM machine controller",
    add_completion=False,
)

console = Console()

CONFIG_DIR_OPTION = typer.Option(
    Path("./configs"), "--config-dir", "-c", envvar="SCVMM_CONFIG_DIR", help="Configuration directory"
)
NAMESPACE_OPTION = typer.Option("default", "--namespace", "-n", help="Machine namespace")

CLI_ERRORS = (
    StoreError,
    LibraryError,
    ConfigurationError,
    TransportError,
    ReconcileError,
    ValidationError,
    YAMLError,
    OSError,
)


def _run_cli_command(handler: Callable[..., bool], *args, **kwargs):
    """Helper to run a CLI command with error handling."""
    try:
        ok = handler(*args, **kwargs)
    except CLI_ERRORS as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    if ok is False:
        raise typer.Exit(1)


def _store(config_dir: Path) -> FileStore:
    try:
        config = ConfigManager(config_dir).load()
    except (ValidationError, YAMLError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    return FileStore(config.agent.store_dir)


@app.command("run")
def run_command(config_dir: Path = CONFIG_DIR_OPTION):
    """Run the controller agent."""
    try:
        asyncio.run(run_agent(config_dir))
    except KeyboardInterrupt:
        console.print("\nAgent shutdown requested")
    except CLI_ERRORS as e:
        console.print(f"[red]Agent error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command("list")
def list_command(
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n", help="Only this namespace"),
    config_dir: Path = CONFIG_DIR_OPTION,
):
    """List machine records."""
    _run_cli_command(list_machines, _store(config_dir), namespace=namespace)


@app.command("status")
def status_command(
    name: str = typer.Argument(..., help="Machine name"),
    namespace: str = NAMESPACE_OPTION,
    config_dir: Path = CONFIG_DIR_OPTION,
):
    """Show the status and conditions of a machine."""
    _run_cli_command(show_status, _store(config_dir), namespace, name)


@app.command("reconcile")
def reconcile_command(
    name: str = typer.Argument(..., help="Machine name"),
    namespace: str = NAMESPACE_OPTION,
    config_dir: Path = CONFIG_DIR_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Run one reconciliation attempt for a machine."""
    setup_logging("DEBUG" if verbose else "WARNING")
    _run_cli_command(reconcile_machine, ConfigManager(config_dir), namespace, name)


@app.command("delete")
def delete_command(
    name: str = typer.Argument(..., help="Machine name"),
    namespace: str = NAMESPACE_OPTION,
    force: bool = typer.Option(False, "--force", "-f", help="Delete without confirmation"),
    config_dir: Path = CONFIG_DIR_OPTION,
):
    """Request deletion of a machine and its VM."""
    if not force:
        confirm = typer.confirm(f"Delete machine {namespace}/{name} and its VM?")
        if not confirm:
            raise typer.Abort()
    _run_cli_command(delete_machine, _store(config_dir), namespace, name)


@app.command("validate")
def validate_command(config_dir: Path = CONFIG_DIR_OPTION):
    """Validate configuration, function scripts and stored records."""
    _run_cli_command(validate_config, ConfigManager(config_dir))


def main():
    """Main entry point for CLI."""
    app()
