"""
Rollout workflows: which steps each node runs and what every step does.

Two workflows exist:

- :class:`OsUpdateWorkflow` upgrades the operating system packages of every
  node, workers first.
- :class:`RuntimeUpgradeWorkflow` moves the cluster runtime to a target
  version, control plane first.
"""
import logging
import shlex
import time
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

from updatectl.errors import MissingTargetVersionError, UpdateError
from .models import NodeInfo, NodeRole
from .steps import (
    OS_UPDATE_STEPS,
    RUNTIME_AGENT_STEPS,
    RUNTIME_SERVER_STEPS,
    Step,
    StepPlan,
)
from .store import StateHolder

logger = logging.getLogger("updatectl.workflows")

APT_FULL_UPGRADE = (
    "sudo apt-get update -qq 2>/dev/null && "
    "sudo DEBIAN_FRONTEND=noninteractive apt-get full-upgrade -y 2>&1"
)

StepAction = Callable[[], str]


class Workflow:
    """Base class shared by the rollout workflows.

    Subclasses define :meth:`plan` (the fixed step list for a role) and map
    every step of that plan to a method taking the node being processed.
    """

    def __init__(self, cluster, executor, holder: StateHolder, config):
        self.cluster = cluster
        self.executor = executor
        self.holder = holder
        self.config = config

    def plan(self, role: NodeRole) -> StepPlan:
        raise NotImplementedError

    def compensates(self, role: NodeRole) -> bool:
        """Whether a failed node of ``role`` gets a best-effort uncordon."""
        return True

    def describe(self) -> str:
        raise NotImplementedError

    def handlers(self) -> Dict[Step, Callable[[NodeInfo], str]]:
        return {
            Step.CORDON: self.cordon,
            Step.DRAIN: self.drain,
            Step.UNCORDON: self.uncordon,
        }

    def actions(self, node: NodeInfo) -> List[Tuple[Step, StepAction]]:
        """Bind every step of the node's plan to that node."""
        handlers = self.handlers()
        return [(step, (lambda h=handlers[step]: h(node))) for step in self.plan(node.role)]

    def _tail(self, output: str, fallback: str) -> str:
        return output[-self.config.upgrade.output_tail:] or fallback

    def _log(self, node: NodeInfo, message: str, level: str = 'info') -> None:
        self.holder.log(message, level=level, node=node.name)

    # Steps shared by both workflows

    def cordon(self, node: NodeInfo) -> str:
        self._log(node, 'Cordoning node...')
        self.cluster.cordon(node.name)
        return 'Node cordoned'

    def drain(self, node: NodeInfo) -> str:
        self._log(node, 'Draining pods...')
        self.cluster.drain(node.name)
        return 'Pods drained'

    def uncordon(self, node: NodeInfo) -> str:
        self._log(node, 'Uncordoning node...')
        self.cluster.uncordon(node.name)
        return 'Node uncordoned'

    def wait_ready(self, node: NodeInfo, timeout: int) -> str:
        self._log(node, 'Waiting for node to be Ready...')
        self.cluster.wait_ready(node.name, timeout)
        return 'Node is Ready'


class OsUpdateWorkflow(Workflow):
    """Rolling ``apt full-upgrade`` across the cluster."""

    def plan(self, role: NodeRole) -> StepPlan:
        return OS_UPDATE_STEPS

    def describe(self) -> str:
        return 'rolling OS update'

    def handlers(self) -> Dict[Step, Callable[[NodeInfo], str]]:
        handlers = super().handlers()
        handlers[Step.FULL_UPGRADE] = self.full_upgrade
        handlers[Step.WAIT_READY] = lambda node: self.wait_ready(
            node, self.config.upgrade.os_ready_timeout
        )
        return handlers

    def full_upgrade(self, node: NodeInfo) -> str:
        self._log(node, 'Running apt full-upgrade...')
        output = self.executor.execute(
            node.name,
            APT_FULL_UPGRADE,
            timeout=self.config.upgrade.os_upgrade_timeout,
            address=node.address,
        )
        self._log(node, 'Apt full-upgrade completed')
        return self._tail(output, 'Packages upgraded')


class RuntimeUpgradeWorkflow(Workflow):
    """Upgrade the cluster runtime to ``target_version``, server first."""

    def __init__(self, cluster, executor, holder: StateHolder, config,
                 target_version: Optional[str] = None):
        if not target_version:
            raise MissingTargetVersionError()
        super().__init__(cluster, executor, holder, config)
        self.target_version = target_version

    def plan(self, role: NodeRole) -> StepPlan:
        if role == NodeRole.CONTROL_PLANE:
            return RUNTIME_SERVER_STEPS
        return RUNTIME_AGENT_STEPS

    def compensates(self, role: NodeRole) -> bool:
        # Control plane nodes are never cordoned by this workflow.
        return role == NodeRole.WORKER

    def describe(self) -> str:
        return f'runtime upgrade to {self.target_version}'

    def handlers(self) -> Dict[Step, Callable[[NodeInfo], str]]:
        handlers = super().handlers()
        handlers.update({
            Step.UPGRADE_SERVER: self.upgrade_server,
            Step.WAIT_API_READY: self.wait_api_ready,
            Step.UPGRADE_AGENT: self.upgrade_agent,
            Step.WAIT_READY: lambda node: self.wait_ready(
                node, self.config.upgrade.agent_ready_timeout
            ),
        })
        return handlers

    def server_command(self) -> str:
        runtime = self.config.runtime
        return (
            f"curl -sfL {shlex.quote(runtime.install_script_url)} | "
            f"sudo {runtime.version_env}={shlex.quote(self.target_version)} sh -"
        )

    def agent_command(self, architecture: Optional[str]) -> str:
        runtime = self.config.runtime
        asset = runtime.assets.get(architecture or '')
        if not asset:
            raise UpdateError(f"No runtime binary known for architecture '{architecture}'")
        url = runtime.binary_url.format(version=quote(self.target_version, safe=''), asset=asset)
        binary = shlex.quote(runtime.binary_path)
        service = shlex.quote(runtime.agent_service)
        return ' && '.join([
            f'sudo systemctl stop {service}',
            f'curl -sfL {shlex.quote(url)} -o /tmp/runtime-new',
            f'sudo mv /tmp/runtime-new {binary} && sudo chmod +x {binary}',
            f'sudo systemctl start {service}',
        ])

    def upgrade_server(self, node: NodeInfo) -> str:
        self._log(node, f'Upgrading runtime server to {self.target_version}...')
        output = self.executor.execute(
            node.name,
            self.server_command(),
            timeout=self.config.upgrade.runtime_upgrade_timeout,
            address=node.address,
        )
        self._log(node, 'Runtime server upgrade script completed')
        return self._tail(output, 'Server upgraded')

    def wait_api_ready(self, node: NodeInfo) -> str:
        self._log(node, 'Waiting for the API server to come back...')
        time.sleep(self.config.upgrade.restart_grace_seconds)
        self.cluster.wait_ready(node.name, self.config.upgrade.server_ready_timeout)
        return 'API server is back'

    def upgrade_agent(self, node: NodeInfo) -> str:
        self._log(node, f'Upgrading runtime agent binary to {self.target_version}...')
        command = self.agent_command(node.architecture)
        logger.debug(f"Agent upgrade command for {node.name}: {command}")
        output = self.executor.execute(
            node.name,
            command,
            timeout=self.config.upgrade.runtime_upgrade_timeout,
            address=node.address,
        )
        self._log(node, 'Runtime agent binary upgraded')
        return self._tail(output, 'Binary replaced and agent restarted')
