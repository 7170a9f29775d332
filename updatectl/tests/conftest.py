import threading

import pytest

from updatectl.config import UpdaterConfig
from updatectl.modules.models import NodeInfo, NodeRole
from updatectl.modules.orchestrator import UpdateOrchestrator
from updatectl.modules.store import StateStore


class FakeCluster:
    """In-memory cluster control client that records every call."""

    def __init__(self, nodes):
        self.nodes = list(nodes)
        self.calls = []
        self.cordoned = set()
        self.failures = {}
        self.block_on = None
        self.entered = threading.Event()
        self.release = threading.Event()

    def fail(self, node, op, error):
        self.failures[(node, op)] = error

    def _call(self, op, name):
        self.calls.append((op, name))
        if self.block_on == (name, op):
            self.entered.set()
            self.release.wait(5)
        error = self.failures.get((name, op))
        if error is not None:
            raise error

    def list_nodes(self):
        self.calls.append(('list_nodes', None))
        return list(self.nodes)

    def cordon(self, name):
        self._call('cordon', name)
        self.cordoned.add(name)

    def uncordon(self, name):
        self._call('uncordon', name)
        self.cordoned.discard(name)

    def drain(self, name):
        self._call('drain', name)

    def wait_ready(self, name, timeout):
        self._call('wait_ready', name)


class FakeExecutor:
    """Returns canned output per node, or raises the error registered for it."""

    def __init__(self, output="Done.\n"):
        self.output = output
        self.outputs = {}
        self.failures = {}
        self.commands = []

    def execute(self, node_name, command, timeout=None, address=None):
        self.commands.append((node_name, command, timeout, address))
        error = self.failures.get(node_name)
        if error is not None:
            raise error
        return self.outputs.get(node_name, self.output)


@pytest.fixture
def three_nodes():
    return [
        NodeInfo(name="server", role=NodeRole.CONTROL_PLANE, address="10.0.0.1",
                 runtime_version="v1.29.4+k3s1", architecture="arm64"),
        NodeInfo(name="agent2", role=NodeRole.WORKER, address="10.0.0.3",
                 runtime_version="v1.29.4+k3s1", architecture="arm64"),
        NodeInfo(name="agent1", role=NodeRole.WORKER, address="10.0.0.2",
                 runtime_version="v1.29.4+k3s1", architecture="amd64"),
    ]


@pytest.fixture
def config(tmp_path):
    config = UpdaterConfig()
    config.state.path = str(tmp_path / "update-state.json")
    config.upgrade.restart_grace_seconds = 0
    config.upgrade.poll_interval = 0
    config.upgrade.local_hostname = "orchestrator-host"
    return config


@pytest.fixture
def cluster(three_nodes):
    return FakeCluster(three_nodes)


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def make_orchestrator(config, cluster, executor):
    def _make():
        store = StateStore(config.state.path, max_logs=config.state.max_logs)
        return UpdateOrchestrator(cluster, executor, store, config)
    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()
