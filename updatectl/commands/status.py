import json

import typer

from updatectl.errors import PreconditionError, UpdateError
from updatectl.modules.models import OperationState, OperationStatus
from updatectl.modules.orchestrator import current_state, get_orchestrator

STATUS_ICONS = {
    "pending": "⏳",
    "in-progress": "🔄",
    "complete": "✅",
    "error": "❌",
    "skipped": "⏭️",
}


def render_state(state: OperationState) -> None:
    """Print a human readable view of ``state``."""
    typer.echo(f"📡 Status: {state.status.value} (operation: {state.operation.value})")
    if state.target_version:
        typer.echo(f"   Target version: {state.target_version}")
    if state.started_at:
        typer.echo(f"   Started: {state.started_at}  Completed: {state.completed_at or '-'}")
    if state.error:
        typer.echo(f"   Error: {state.error}")

    for index, name in enumerate(state.node_order):
        node = state.nodes[name]
        marker = "👉" if index == state.current_node_index else "  "
        typer.echo(f"{marker} {STATUS_ICONS[node.status.value]} {name} [{node.role.value}] {node.status.value}")
        for step in node.steps:
            typer.echo(f"      {STATUS_ICONS[step.status.value]} {step.name}")
        if node.error:
            typer.echo(f"      error: {node.error.splitlines()[0]}")


def render_versions(state: OperationState) -> None:
    runtime = state.versions.runtime
    typer.echo(f"🧩 Runtime: current={runtime.current or '-'} latest={runtime.latest or 'unknown'}")
    for name, version in sorted(runtime.per_node.items()):
        typer.echo(f"   {name}: {version or '-'}")
    for name, result in sorted(state.versions.os.items()):
        if result.upgradable < 0:
            typer.echo(f"📦 {name}: check failed ({result.error})")
        else:
            typer.echo(f"📦 {name}: {result.upgradable} package(s) upgradable")


def show_status(
    as_json: bool = typer.Option(False, "--json", help="Print the raw state document"),
    logs: int = typer.Option(0, "--logs", help="Show the last N log entries"),
):
    """Show the current rollout state."""
    state = current_state()
    if as_json:
        typer.echo(json.dumps(state.to_dict(), indent=2))
        return
    render_state(state)
    render_versions(state)
    for entry in list(state.logs)[-logs:] if logs else []:
        where = f"[{entry.node}] " if entry.node else ""
        typer.echo(f"{entry.timestamp} {entry.level.upper():5} {where}{entry.message}")


def check_updates():
    """Check every node for OS package and runtime updates."""
    try:
        state = get_orchestrator().check()
    except PreconditionError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)
    except UpdateError as e:
        typer.echo(f"❌ Update check failed: {e}")
        raise typer.Exit(1)
    render_versions(state)


def reset_state():
    """Clear rollout state back to idle (version results are kept)."""
    try:
        get_orchestrator().reset()
    except PreconditionError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)
    typer.echo("✅ State reset to idle")


def exit_code(state: OperationState) -> int:
    return 1 if state.status == OperationStatus.ERROR else 0
