# fleet_engine/cli.py
"""
fleet - provision, deploy and validate the DePIN edge fleet.

Exit codes: 0 success (warnings included), 1 a node blocked or a check
failed, 2 configuration error (bad inventory, wrong role, unknown node).
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fleet_engine.config import settings
from fleet_engine.core.errors import (
    ExecutorError,
    FleetError,
    InventoryError,
    MonitoringUnavailable,
    NodeNotFound,
)
from fleet_engine.core.models import Node, Role, RunStatus
from fleet_engine.engine.engine import NodeRunResult
from fleet_engine.engine.fleet import FleetOutcome
from fleet_engine.inventory.loader import load_inventory
from fleet_engine.runtime.containers import DockerCliRuntime
from fleet_engine.validator.models import ValidationReport, Verdict

logger = logging.getLogger(__name__)

console = Console()

EXIT_FAILURE = 1
EXIT_CONFIG = 2

ROLE_CHOICE = click.Choice([role.value for role in Role])

VERDICT_STYLE = {
    Verdict.PASS: "green",
    Verdict.WARN: "yellow",
    Verdict.FAIL: "red",
}


def _fail(message: str, code: int = EXIT_FAILURE) -> None:
    console.print(f"[bold red]error:[/bold red] {message}")
    raise click.exceptions.Exit(code)


def _container(ctx: click.Context):
    return ctx.obj["container"]


# ============================================
# GROUP
# ============================================

@click.group()
@click.option("--inventory", "-i", "inventory_path", default=None,
              help="Inventory file (default: FLEET_INVENTORY_PATH)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, inventory_path, verbose):
    """
    fleet - orchestrate a small DePIN edge fleet.

    Nodes come from the inventory file; lifecycle state and the execution
    audit trail live in the local state store.
    """
    ctx.ensure_object(dict)

    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if "container" not in ctx.obj:
        from fleet_engine.container import build_container

        ctx.obj["container"] = build_container(settings)

    container = ctx.obj["container"]
    path = inventory_path or container.settings.inventory_path
    if inventory_path is None and not Path(path).exists():
        logger.debug(f"[cli] no inventory file at {path}, using stored nodes")
        return

    try:
        registered = container.inventory.sync(load_inventory(path))
    except InventoryError as e:
        _fail(str(e), EXIT_CONFIG)
    if registered:
        logger.info(f"[cli] registered {len(registered)} new node(s) from {path}")


# ============================================
# PROVISIONING
# ============================================

def _select_nodes(container, role: Role, node_id: Optional[str], run_all: bool) -> List[Node]:
    inventory = container.inventory

    if run_all:
        nodes = inventory.list_nodes(role)
        if not nodes:
            _fail(f"no nodes with role '{role.value}' in inventory", EXIT_CONFIG)
        return nodes

    try:
        if node_id:
            node = inventory.get(node_id)
        elif container.settings.local_node:
            node = inventory.get(container.settings.local_node)
        else:
            node = inventory.detect_local()
    except NodeNotFound as e:
        _fail(str(e), EXIT_CONFIG)

    if node.role != role:
        _fail(
            f"{node.identifier} carries role '{node.role.value}', not '{role.value}'",
            EXIT_CONFIG,
        )
    return [node]


def _failure_reason(outcome: FleetOutcome) -> Optional[str]:
    """Single most specific reason for a failed outcome."""
    if outcome.error is not None:
        return str(outcome.error)
    result = outcome.result
    if result.failure is not None:
        return str(result.failure)
    if result.cancelled:
        return f"{outcome.node_id}: cancelled"
    return None


def _print_outcomes(title: str, outcomes: List[FleetOutcome]) -> None:
    table = Table(title=title)
    table.add_column("Node", style="cyan")
    table.add_column("Status")
    table.add_column("Executed")
    table.add_column("Skipped")

    for outcome in outcomes:
        result: Optional[NodeRunResult] = outcome.result
        if result is None:
            table.add_row(outcome.node_id, "[red]ERROR[/red]", "-", "-")
            continue
        style = "green" if outcome.ok else "red"
        skipped = len(result.results) - len(result.executed)
        table.add_row(
            outcome.node_id,
            f"[{style}]{result.status.value}[/{style}]",
            ", ".join(result.executed) or "-",
            str(skipped),
        )
    console.print(table)

    for outcome in outcomes:
        reason = _failure_reason(outcome)
        if reason:
            console.print(f"[bold red]✗[/bold red] {reason}")


def _finish(outcomes: List[FleetOutcome]) -> None:
    if not all(outcome.ok for outcome in outcomes):
        raise click.exceptions.Exit(EXIT_FAILURE)


@cli.command()
@click.argument("role", type=ROLE_CHOICE)
@click.option("--node", "node_id", default=None, help="Node identifier (default: this host)")
@click.option("--all", "run_all", is_flag=True, help="Every node with ROLE, in parallel")
@click.option("--reapply", is_flag=True, help="Re-run repeatable phases that already succeeded")
@click.pass_context
def provision(ctx, role, node_id, run_all, reapply):
    """Run every outstanding phase for ROLE nodes."""
    container = _container(ctx)
    nodes = _select_nodes(container, Role(role), node_id, run_all)

    console.print(Panel.fit(
        f"[bold blue]provision {role}[/bold blue]\n"
        + ", ".join(node.identifier for node in nodes),
        border_style="blue",
    ))

    outcomes = container.fleet.provision([n.identifier for n in nodes], reapply=reapply)
    _print_outcomes(f"provision {role}", outcomes)
    _finish(outcomes)


@cli.command()
@click.argument("role", type=ROLE_CHOICE)
@click.option("--node", "node_id", default=None, help="Node identifier (default: this host)")
@click.option("--all", "run_all", is_flag=True, help="Every node with ROLE, in parallel")
@click.pass_context
def deploy(ctx, role, node_id, run_all):
    """Run only the role-specific deploy phase."""
    container = _container(ctx)
    nodes = _select_nodes(container, Role(role), node_id, run_all)

    outcomes = container.fleet.deploy([n.identifier for n in nodes])
    _print_outcomes(f"deploy {role}", outcomes)
    _finish(outcomes)


@cli.command()
@click.argument("node_id")
@click.argument("phase")
@click.pass_context
def rerun(ctx, node_id, phase):
    """Explicitly re-run a single PHASE on NODE_ID."""
    container = _container(ctx)
    try:
        result = container.engine.run_phase(node_id, phase)
    except KeyError as e:
        _fail(str(e.args[0]) if e.args else str(e), EXIT_CONFIG)
    except NodeNotFound as e:
        _fail(str(e), EXIT_CONFIG)
    except FleetError as e:
        _fail(str(e))

    outcome = FleetOutcome(node_id, result=result)
    _print_outcomes(f"rerun {phase}", [outcome])
    _finish([outcome])


@cli.command()
@click.argument("node_id")
@click.pass_context
def unblock(ctx, node_id):
    """Clear a BLOCKED node so the next provision resumes it."""
    container = _container(ctx)
    try:
        node = container.inventory.get(node_id)
    except NodeNotFound as e:
        _fail(str(e), EXIT_CONFIG)

    if not node.is_blocked():
        console.print(f"{node_id} is not blocked ({node.run_status.value})")
        return

    phase, reason = node.blocked_phase, node.blocked_reason
    container.inventory.clear_block(node_id)
    console.print(f"[green]{node_id} unblocked[/green] (was blocked at {phase}: {reason})")


# ============================================
# VALIDATION
# ============================================

def _print_report(title: str, report: ValidationReport, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    table = Table(title=title)
    table.add_column("Node", style="cyan")
    table.add_column("Check")
    table.add_column("Verdict")
    table.add_column("Detail", overflow="fold")

    for result in report.results:
        style = VERDICT_STYLE[result.verdict]
        table.add_row(
            result.node_id or "-",
            result.category,
            f"[{style}]{result.verdict.value}[/{style}]",
            result.message,
        )
    console.print(table)

    style = VERDICT_STYLE[report.verdict]
    console.print(
        f"[bold {style}]{report.verdict.value.upper()}[/bold {style}] "
        f"{report.passed} pass, {report.warnings} warn, {report.failures} fail"
    )
    failures = [r for r in report.results if r.verdict == Verdict.FAIL]
    if failures:
        first = failures[0]
        console.print(f"[bold red]✗[/bold red] {first.node_id}: {first.category}: {first.message}")


@cli.command()
@click.option("--node", "node_ids", multiple=True, help="Restrict to these nodes")
@click.option("--check", "categories", multiple=True, help="Restrict to these check categories")
@click.option("--json", "as_json", is_flag=True, help="Machine-readable report")
@click.pass_context
def validate(ctx, node_ids, categories, as_json):
    """Run the validation battery against the fleet."""
    container = _container(ctx)
    try:
        report = container.validator.run(
            node_ids=list(node_ids) or None,
            categories=list(categories) or None,
        )
    except NodeNotFound as e:
        _fail(str(e), EXIT_CONFIG)

    _print_report("fleet validation", report, as_json)
    raise click.exceptions.Exit(report.exit_code)


@cli.command()
@click.option("--node", "node_id", default=None, help="Node identifier (default: this host)")
@click.option("--json", "as_json", is_flag=True, help="Machine-readable report")
@click.option("--watch", type=int, default=None, help="Repeat every N seconds")
@click.pass_context
def health(ctx, node_id, as_json, watch):
    """Lightweight health checks of this node."""
    container = _container(ctx)
    try:
        if node_id:
            node = container.inventory.get(node_id)
        elif container.settings.local_node:
            node = container.inventory.get(container.settings.local_node)
        else:
            node = container.inventory.detect_local()
    except NodeNotFound as e:
        _fail(str(e), EXIT_CONFIG)

    checker = container.health_checker
    if watch:
        checker.check_interval = watch
        checker.start(node, lambda report: _print_report(f"health {node.identifier}", report, as_json))
        return

    report = checker.check(node)
    _print_report(f"health {node.identifier}", report, as_json)
    raise click.exceptions.Exit(report.exit_code)


# ============================================
# INSPECTION
# ============================================

@cli.command()
@click.option("--role", type=ROLE_CHOICE, default=None)
@click.option("--targets", "show_targets", is_flag=True,
              help="Also show Prometheus scrape-target health from the monitoring node")
@click.pass_context
def status(ctx, role, show_targets):
    """Lifecycle and engine state of every node."""
    container = _container(ctx)
    nodes = container.inventory.list_nodes(Role(role) if role else None)

    table = Table(title="fleet status")
    table.add_column("Node", style="cyan")
    table.add_column("Role")
    table.add_column("Hardware")
    table.add_column("Mesh address")
    table.add_column("Lifecycle")
    table.add_column("Run")
    table.add_column("Blocked", overflow="fold")

    for node in nodes:
        blocked = ""
        if node.is_blocked():
            kind = node.blocked_kind.value if node.blocked_kind else "?"
            blocked = f"{node.blocked_phase} ({kind}): {node.blocked_reason}"
        run_style = "red" if node.is_blocked() else "green" if node.run_status == RunStatus.COMPLETE else "white"
        table.add_row(
            node.identifier,
            node.role.value,
            node.hardware.name,
            node.mesh_address or "-",
            node.lifecycle_state.value,
            f"[{run_style}]{node.run_status.value}[/{run_style}]",
            blocked,
        )
    console.print(table)

    if show_targets:
        _print_targets(container)


def _print_targets(container) -> None:
    try:
        targets = container.targets.fetch()
    except MonitoringUnavailable as e:
        _fail(f"scrape targets unavailable: {e}")

    table = Table(title="scrape targets")
    table.add_column("Job", style="cyan")
    table.add_column("Instance")
    table.add_column("Health")
    table.add_column("Last error", overflow="fold")

    for target in targets:
        style = "green" if target.up else "red"
        table.add_row(
            target.job,
            target.instance,
            f"[{style}]{target.health}[/{style}]",
            target.last_error,
        )
    console.print(table)

    down = sum(1 for target in targets if not target.up)
    if down:
        console.print(f"[bold yellow]{down} of {len(targets)} targets down[/bold yellow]")


@cli.command()
@click.option("--node", "node_ids", multiple=True, help="Restrict to these nodes (default: all)")
@click.option("--tail", "lines", type=click.IntRange(min=1), default=10, show_default=True,
              help="Log lines per container")
@click.pass_context
def logs(ctx, node_ids, lines):
    """Tail the logs of every running container on the fleet."""
    container = _container(ctx)
    try:
        nodes = (
            [container.inventory.get(node_id) for node_id in node_ids]
            if node_ids else container.inventory.list_nodes()
        )
    except NodeNotFound as e:
        _fail(str(e), EXIT_CONFIG)

    failed = False
    for node in nodes:
        console.rule(f"[bold cyan]{node.identifier}[/bold cyan] ({node.role.value})")
        runtime = DockerCliRuntime(
            container.executors.for_node(node), node, container.settings.check_timeout
        )
        try:
            sections = runtime.tail_logs(lines)
        except ExecutorError as e:
            failed = True
            console.print(f"[bold red]✗[/bold red] {node.identifier}: {e}")
            continue

        if not sections:
            console.print("no running containers")
        for name, text in sections:
            console.print(f"[bold]{name}[/bold]")
            if text:
                console.print(text, markup=False, highlight=False)

    if failed:
        raise click.exceptions.Exit(EXIT_FAILURE)


@cli.command()
@click.argument("node_id")
@click.option("--phase", default=None, help="Only records of this phase")
@click.option("--limit", type=click.IntRange(min=1), default=20, show_default=True)
@click.option("--output", "show_output", is_flag=True, help="Show captured stdout/stderr")
@click.pass_context
def records(ctx, node_id, phase, limit, show_output):
    """Execution records of NODE_ID, oldest first."""
    container = _container(ctx)
    try:
        container.inventory.get(node_id)
    except NodeNotFound as e:
        _fail(str(e), EXIT_CONFIG)

    entries = container.record_repository.list_for_node(node_id, phase=phase, limit=limit)

    table = Table(title=f"records {node_id}")
    table.add_column("Started")
    table.add_column("Phase", style="cyan")
    table.add_column("Seq")
    table.add_column("Try")
    table.add_column("Outcome")
    table.add_column("Exit")
    table.add_column("Kind")
    table.add_column("Time")
    table.add_column("Diagnostic", overflow="fold")

    for record in entries:
        style = "green" if record.succeeded else "red"
        table.add_row(
            record.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.phase,
            "-" if record.sequence is None else str(record.sequence),
            str(record.attempt),
            f"[{style}]{record.outcome.value}[/{style}]",
            "-" if record.exit_code is None else str(record.exit_code),
            record.failure_kind.value if record.failure_kind else "-",
            f"{record.duration_seconds:.1f}s",
            "" if record.succeeded else record.diagnostic(),
        )
    console.print(table)

    if show_output:
        for record in entries:
            console.rule(f"{record.phase} #{record.attempt} ({record.outcome.value})")
            if record.stdout:
                console.print(record.stdout, markup=False, highlight=False)
            if record.stderr:
                console.print(record.stderr, style="red", markup=False, highlight=False)


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
@click.pass_context
def serve(ctx, host, port):
    """Run the read-only HTTP API."""
    import uvicorn

    from fleet_engine.api.main import create_app

    uvicorn.run(create_app(_container(ctx)), host=host, port=port)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
