from typing import Optional

import typer

from updatectl.errors import PreconditionError
from updatectl.modules.models import OperationKind
from updatectl.modules.orchestrator import get_orchestrator
from .status import exit_code, render_state

app = typer.Typer(help="Start a rolling update")


def _run(operation: OperationKind, version: Optional[str], poll: float) -> None:
    """Start ``operation`` and block until the rollout thread finishes.

    The rollout runs on a daemon thread of this process, so returning early
    would kill it mid-node.
    """
    orchestrator = get_orchestrator()
    try:
        state = orchestrator.start(operation, version)
    except PreconditionError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)

    typer.echo(f"🚀 Started {operation.value}. Order: {' → '.join(state.node_order)}")

    reported = None
    while not orchestrator.wait(timeout=poll):
        current = orchestrator.snapshot()
        if 0 <= current.current_node_index < len(current.node_order):
            name = current.node_order[current.current_node_index]
            if name != reported:
                typer.echo(f"⏳ Working on {name}...")
                reported = name

    final = orchestrator.snapshot()
    render_state(final)
    raise typer.Exit(exit_code(final))


@app.command("os")
def start_os(
    poll: float = typer.Option(10.0, "--poll", help="Progress report interval in seconds"),
):
    """Rolling OS package upgrade, workers first. Blocks until done."""
    _run(OperationKind.OS_UPDATE, None, poll)


@app.command("runtime")
def start_runtime(
    version: str = typer.Option(..., "--version", "-v", help="Target runtime version, e.g. v1.30.2+k3s1"),
    poll: float = typer.Option(10.0, "--poll", help="Progress report interval in seconds"),
):
    """Cluster runtime upgrade, control plane first. Blocks until done."""
    _run(OperationKind.RUNTIME_UPGRADE, version, poll)
