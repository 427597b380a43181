"""Command implementations for CLI."""

import asyncio
from typing import List, Optional

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from scvmm.controller.config import ConfigManager
from scvmm.controller.reconciler import MachineReconciler
from scvmm.controller.result import ReconcileResult
from scvmm.controller.store import FileStore
from scvmm.models.condition import ConditionType
from scvmm.models.machine import ScvmmMachine
from scvmm.remote.library import FunctionLibrary


console = Console()


def _condition_cell(machine: ScvmmMachine, condition_type: ConditionType) -> str:
    for condition in machine.status.conditions:
        if condition.type == condition_type:
            if condition.status:
                return "[green]✓[/green]"
            return f"[yellow]{condition.reason or 'False'}[/yellow]"
    return "[dim]-[/dim]"


def list_machines(store: FileStore, namespace: Optional[str] = None):
    """List machine records with formatted output."""
    machines: List[ScvmmMachine] = asyncio.run(store.list_machines())
    if namespace:
        machines = [m for m in machines if m.metadata.namespace == namespace]

    table = Table(title="ScvmmMachines")
    table.add_column("Namespace", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("VM Name", style="magenta")
    table.add_column("Ready")
    table.add_column("VM Status")
    table.add_column("Created")
    table.add_column("Running")
    table.add_column("Addresses", style="dim", max_width=40)

    for machine in machines:
        ready = "[green]●[/green]" if machine.status.ready else "[red]○[/red]"
        if machine.deleting:
            ready = "[red]deleting[/red]"
        table.add_row(
            machine.metadata.namespace,
            machine.metadata.name,
            machine.spec.vm_name or "",
            ready,
            machine.status.vm_status,
            _condition_cell(machine, ConditionType.VM_CREATED),
            _condition_cell(machine, ConditionType.VM_RUNNING),
            ", ".join(a.address for a in machine.status.addresses),
        )

    console.print(table)


def show_status(store: FileStore, namespace: str, name: str) -> bool:
    """Show the status of one machine; returns False when it does not exist."""
    machine = asyncio.run(store.get_machine(namespace, name))
    if machine is None:
        console.print(f"[red]Machine {namespace}/{name} not found[/red]")
        return False

    status = machine.status
    console.print(f"[bold]ScvmmMachine: {machine.key}[/bold]")
    console.print(f"  VM Name: {machine.spec.vm_name or '-'}")
    console.print(f"  Provider ID: {machine.spec.provider_id or '-'}")
    console.print(f"  Ready: {'Yes' if status.ready else 'No'}")
    console.print(f"  VM Status: {status.vm_status or '-'}")
    console.print(f"  Hostname: {status.hostname or '-'}")
    console.print(f"  Addresses: {', '.join(a.address for a in status.addresses) or '-'}")
    if status.creation_time:
        console.print(f"  Created: {status.creation_time.strftime('%Y-%m-%d %H:%M:%S')}")
    if machine.deleting:
        console.print(f"  Deletion requested: {machine.metadata.deletion_timestamp}")
    console.print(f"  Finalizers: {', '.join(machine.metadata.finalizers) or '-'}")

    if status.conditions:
        console.print()
        table = Table(title="Conditions")
        table.add_column("Type", style="cyan")
        table.add_column("Status")
        table.add_column("Reason")
        table.add_column("Severity")
        table.add_column("Message", max_width=60)
        table.add_column("Last Transition", style="dim")
        for condition in status.conditions:
            table.add_row(
                condition.type.value,
                "[green]True[/green]" if condition.status else "[red]False[/red]",
                condition.reason,
                condition.severity.value if condition.severity else "",
                condition.message,
                condition.last_transition_time.strftime("%Y-%m-%d %H:%M:%S"),
            )
        console.print(table)
    return True


def reconcile_machine(config_manager: ConfigManager, namespace: str, name: str) -> ReconcileResult:
    """Run one reconciliation attempt and print its outcome."""
    config = config_manager.config or config_manager.load()
    store = FileStore(config.agent.store_dir)
    library = FunctionLibrary.load(config.agent.script_dir)
    reconciler = MachineReconciler(store, config, library=library)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(f"Reconciling {namespace}/{name}...", total=None)
        result = asyncio.run(reconciler.reconcile(namespace, name))
        progress.update(task, completed=True)

    if result.requeue:
        console.print(f"[green]✓[/green] Reconciled {namespace}/{name}, requeue in {result.requeue_after:.0f}s")
    else:
        console.print(f"[green]✓[/green] Reconciled {namespace}/{name}")
    return result


def delete_machine(store: FileStore, namespace: str, name: str) -> bool:
    """Request deletion of a machine record."""
    machine = asyncio.run(store.request_deletion(namespace, name))
    if machine is None:
        console.print(f"[red]Machine {namespace}/{name} not found[/red]")
        return False
    if machine.metadata.finalizers:
        console.print(f"[green]✓[/green] Deletion of {namespace}/{name} requested")
    else:
        console.print(f"[green]✓[/green] Machine {namespace}/{name} removed")
    return True


def validate_config(config_manager: ConfigManager) -> bool:
    """Validate configuration, function scripts and stored records."""
    config = config_manager.load()
    store = FileStore(config.agent.store_dir)
    library = FunctionLibrary.load(config.agent.script_dir)
    machines = asyncio.run(store.list_machines())

    console.print("[green]✓[/green] Configuration is valid")
    console.print(f"  Store: {store.store_dir}")
    console.print(f"  Functions: {len(library)}")
    console.print(f"  Machines: {len(machines)}")

    missing = library.missing()
    if missing:
        console.print(f"[yellow]![/yellow] Missing functions: {', '.join(missing)}")
        return False
    return True
