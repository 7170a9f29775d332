"""
Rolling update orchestration.

:class:`UpdateOrchestrator` is the single owner of the update state. It
accepts three commands:

- ``check()`` discovers upgradable OS packages and runtime versions.
- ``start(operation, target_version=None)`` plans a rollout and runs it in a
  background thread, one node at a time.
- ``reset()`` returns an idle orchestrator to its initial shape, keeping the
  version check results.

Any caller may read ``snapshot()``/``status()`` at any time; both return
copies.

The cluster client passed in must provide ``list_nodes()``, ``cordon(name)``,
``drain(name)``, ``uncordon(name)`` and ``wait_ready(name, timeout)``. The
executor must provide ``execute(node_name, command, timeout, address)``.
"""
import logging
import threading
from typing import Any, Dict, List, Optional, Union

from updatectl.errors import OperationInProgressError, NoNodesError
from .models import (
    NodeInfo,
    NodeProgress,
    NodeStatus,
    OperationKind,
    OperationState,
    OperationStatus,
    utcnow,
)
from .ordering import sort_nodes
from .steps import StepEngine, new_step_records
from .store import StateHolder, StateStore
from .versions import check_os_updates, check_runtime_versions
from .workflows import OsUpdateWorkflow, RuntimeUpgradeWorkflow, Workflow

logger = logging.getLogger("updatectl.orchestrator")

BUSY_STATUSES = (OperationStatus.UPDATING, OperationStatus.CHECKING)


class UpdateOrchestrator:
    """Drives OS updates and runtime upgrades across the cluster."""

    def __init__(self, cluster, executor, store: StateStore, config):
        """Initialize the orchestrator and load the persisted state.

        Args:
            cluster: Cluster control client
            executor: Remote command executor
            store: Where the state snapshot lives
            config: :class:`updatectl.config.UpdaterConfig`
        """
        self.cluster = cluster
        self.executor = executor
        self.config = config
        self.holder = StateHolder(store)
        self.engine = StepEngine(self.holder)
        self._command_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        logger.info("Update orchestrator started")

    @classmethod
    def from_config(cls, config, cluster=None, executor=None) -> 'UpdateOrchestrator':
        """Build an orchestrator wired to the real cluster and ssh."""
        from .kube import KubeClusterClient
        from .ssh import RemoteExecutor

        return cls(
            cluster=cluster or KubeClusterClient.from_config(config),
            executor=executor or RemoteExecutor.from_config(config),
            store=StateStore(config.state.path, max_logs=config.state.max_logs),
            config=config,
        )

    # Status surface

    def snapshot(self) -> OperationState:
        return self.holder.snapshot()

    def status(self) -> Dict[str, Any]:
        return self.snapshot().to_dict()

    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the background rollout ends; False if still running after ``timeout``."""
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    # Commands

    def check(self) -> OperationState:
        """Run both version checkers and record the results.

        Raises:
            OperationInProgressError: If a rollout or another check is running.
        """
        with self._command_lock:
            if self.holder.status in BUSY_STATUSES:
                raise OperationInProgressError()
            with self.holder.mutate() as state:
                state.status = OperationStatus.CHECKING
        self.holder.log('Checking for OS and runtime updates on all nodes...')

        try:
            nodes = self.cluster.list_nodes()
            os_results = check_os_updates(
                nodes, self.executor, timeout=self.config.upgrade.check_timeout, log=self.holder.log
            )
            runtime = check_runtime_versions(
                nodes,
                self.config.runtime.release_channel_url,
                channel=self.config.runtime.channel,
                timeout=self.config.runtime.channel_timeout,
                log=self.holder.log,
            )
        except Exception as e:
            self.holder.log(f'Update check failed: {e}', level='error')
            with self.holder.mutate() as state:
                state.status = OperationStatus.ERROR
                state.error = str(e)
            raise

        self.holder.log(
            f'Update check complete. Runtime current: {runtime.current}, '
            f'latest: {runtime.latest or "unknown"}'
        )
        with self.holder.mutate() as state:
            state.versions.os = os_results
            state.versions.runtime = runtime
            state.status = OperationStatus.IDLE
        return self.snapshot()

    def _workflow(self, operation: OperationKind, target_version: Optional[str]) -> Workflow:
        if operation == OperationKind.OS_UPDATE:
            return OsUpdateWorkflow(self.cluster, self.executor, self.holder, self.config)
        if operation == OperationKind.RUNTIME_UPGRADE:
            return RuntimeUpgradeWorkflow(
                self.cluster, self.executor, self.holder, self.config, target_version
            )
        raise ValueError(f"Unknown operation '{operation.value}'")

    def start(
        self,
        operation: Union[OperationKind, str],
        target_version: Optional[str] = None,
    ) -> OperationState:
        """Plan a rollout and launch it in the background.

        Returns once the plan is persisted; progress is observable through
        :meth:`snapshot`.

        Raises:
            OperationInProgressError: If a rollout or check is running.
            MissingTargetVersionError: For a runtime upgrade without a version.
            NoNodesError: If the cluster reports no nodes.
        """
        operation = OperationKind(operation)
        with self._command_lock:
            if self.holder.status in BUSY_STATUSES:
                raise OperationInProgressError()

            workflow = self._workflow(operation, target_version)
            nodes = sort_nodes(self.cluster.list_nodes(), operation)
            if not nodes:
                raise NoNodesError()

            with self.holder.mutate() as state:
                state.status = OperationStatus.UPDATING
                state.operation = operation
                state.started_at = utcnow()
                state.completed_at = None
                state.error = None
                state.target_version = target_version if operation == OperationKind.RUNTIME_UPGRADE else None
                state.node_order = [n.name for n in nodes]
                state.current_node_index = -1
                state.nodes = {
                    n.name: NodeProgress(role=n.role, steps=new_step_records(workflow.plan(n.role)))
                    for n in nodes
                }
                state.clear_logs()

            self.holder.log(
                f"Starting {workflow.describe()}. Order: {' -> '.join(n.name for n in nodes)}"
            )

            self._worker = threading.Thread(
                target=self._run_rollout,
                args=(workflow, nodes),
                name=f"updatectl-{operation.value}",
                daemon=True,
            )
            self._worker.start()

        return self.snapshot()

    def reset(self) -> OperationState:
        """Return to idle, keeping the last version check results.

        Raises:
            OperationInProgressError: If a rollout or check is running.
        """
        with self._command_lock:
            if self.holder.status in BUSY_STATUSES:
                raise OperationInProgressError("Cannot reset while an operation is in progress")
            versions = self.holder.snapshot().versions
            self.holder.replace(OperationState.fresh(self.holder.store.max_logs, versions))
        self.holder.log('State reset to idle')
        return self.snapshot()

    # Rollout

    def _run_rollout(self, workflow: Workflow, nodes: List[NodeInfo]) -> None:
        try:
            for index, node in enumerate(nodes):
                with self.holder.mutate() as state:
                    state.current_node_index = index
                    state.nodes[node.name].status = NodeStatus.IN_PROGRESS

                try:
                    self.engine.run_plan(node.name, workflow.actions(node))
                except Exception as e:
                    self._fail_node(workflow, nodes, index, e)
                    return

                self.holder.log(f'Completed {workflow.describe()}', node=node.name)
                with self.holder.mutate() as state:
                    state.nodes[node.name].status = NodeStatus.COMPLETE

            self.holder.log(f'Completed {workflow.describe()} on all nodes')
            with self.holder.mutate() as state:
                state.status = OperationStatus.COMPLETE
                state.completed_at = utcnow()
        except Exception as e:
            logger.exception("Rollout aborted unexpectedly")
            with self.holder.mutate() as state:
                state.status = OperationStatus.ERROR
                state.error = f"Rollout aborted: {e}"
                state.completed_at = utcnow()

    def _fail_node(self, workflow: Workflow, nodes: List[NodeInfo], index: int, error: Exception) -> None:
        node = nodes[index]
        message = str(error)
        self.holder.log(f'Error: {message}', level='error', node=node.name)

        if workflow.compensates(node.role):
            try:
                self.cluster.uncordon(node.name)
                self.holder.log('Node uncordoned after failure', node=node.name)
            except Exception as e:
                self.holder.log(f'Best-effort uncordon failed: {e}', level='warn', node=node.name)

        skipped = [n.name for n in nodes[index + 1:]]
        if skipped:
            self.holder.log(f"Skipping remaining nodes: {', '.join(skipped)}", level='warn')

        with self.holder.mutate() as state:
            state.nodes[node.name].status = NodeStatus.ERROR
            state.nodes[node.name].error = message
            for name in skipped:
                state.nodes[name].status = NodeStatus.SKIPPED
            state.status = OperationStatus.ERROR
            state.error = f"Failed on node {node.name}: {message}"
            state.completed_at = utcnow()


# Process-wide instance used by the CLI and the HTTP surface
_orchestrator: Optional[UpdateOrchestrator] = None
_orchestrator_lock = threading.Lock()


def get_orchestrator() -> UpdateOrchestrator:
    """Get or create the process-wide orchestrator."""
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            from updatectl.config import get_config
            _orchestrator = UpdateOrchestrator.from_config(get_config())
        return _orchestrator


def set_orchestrator(orchestrator: Optional[UpdateOrchestrator]) -> None:
    """Set the process-wide orchestrator."""
    global _orchestrator
    with _orchestrator_lock:
        _orchestrator = orchestrator


def current_state() -> OperationState:
    """Snapshot for read-only callers.

    Uses the process-wide orchestrator when one exists. Otherwise the state
    file is read as written: another process (``updatectl serve`` or a
    blocking ``updatectl start``) may own a rollout in flight, so no crash
    recovery runs and nothing is saved.
    """
    with _orchestrator_lock:
        orchestrator = _orchestrator
    if orchestrator is not None:
        return orchestrator.snapshot()

    from updatectl.config import get_config
    config = get_config()
    return StateStore(config.state.path, max_logs=config.state.max_logs).load(recover=False)
