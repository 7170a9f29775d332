from unittest import mock

import pytest
import requests

from updatectl.errors import RemoteExecutionError
from updatectl.modules import versions
from updatectl.modules.models import NodeInfo, NodeRole, OperationKind, OperationStatus

APT_OUTPUT = """\
WARNING: apt does not have a stable CLI interface. Use with caution in scripts.

Listing...
curl/jammy-updates 7.81.0-1ubuntu1.16 amd64 [upgradable from: 7.81.0-1ubuntu1.15]
libcurl4/jammy-updates 7.81.0-1ubuntu1.16 amd64 [upgradable from: 7.81.0-1ubuntu1.15]
openssl/jammy-security 3.0.2-0ubuntu1.15 amd64 [upgradable from: 3.0.2-0ubuntu1.14]
N: There is 1 additional version. Please use the '-a' switch to see it
"""

CHANNELS = {
    "data": [
        {"id": "stable", "latest": "v1.30.2+k3s1"},
        {"id": "latest", "latest": "v1.31.0+k3s1"},
    ]
}


def _response(payload):
    response = mock.Mock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def test_parse_upgradable():
    assert versions.parse_upgradable(APT_OUTPUT) == ["curl", "libcurl4", "openssl"]


def test_parse_upgradable_nothing_to_do():
    assert versions.parse_upgradable("Listing...\n") == []
    assert versions.parse_upgradable("") == []


def test_check_os_updates_continues_past_failing_node(three_nodes, executor):
    executor.outputs["server"] = APT_OUTPUT
    executor.outputs["agent1"] = "Listing...\n"
    executor.failures["agent2"] = RemoteExecutionError("SSH to 10.0.0.3 failed with exit status 255", exit_code=255)
    logged = []

    results = versions.check_os_updates(
        three_nodes, executor, timeout=120, log=lambda message, **kw: logged.append((message, kw))
    )

    assert results["server"].upgradable == 3
    assert results["server"].packages == ["curl", "libcurl4", "openssl"]
    assert results["agent1"].upgradable == 0
    assert results["agent2"].upgradable == -1
    assert "exit status 255" in results["agent2"].error
    assert [n for n, *_ in executor.commands] == ["server", "agent2", "agent1"]
    assert all(timeout == 120 for _n, _c, timeout, _a in executor.commands)
    assert any(kw.get("level") == "warn" and kw.get("node") == "agent2" for _m, kw in logged)


def test_fetch_latest_release_picks_channel():
    with mock.patch.object(versions.requests, "get", return_value=_response(CHANNELS)) as get:
        assert versions.fetch_latest_release("https://example.test/channels", "stable", 15) == "v1.30.2+k3s1"
        assert versions.fetch_latest_release("https://example.test/channels", "latest", 15) == "v1.31.0+k3s1"
        assert versions.fetch_latest_release("https://example.test/channels", "testing", 15) is None

    get.assert_called_with("https://example.test/channels", timeout=15)


def test_runtime_versions_use_control_plane_as_current(three_nodes):
    three_nodes[1].runtime_version = "v1.28.9+k3s1"

    with mock.patch.object(versions.requests, "get", return_value=_response(CHANNELS)):
        runtime = versions.check_runtime_versions(three_nodes, "https://example.test/channels")

    assert runtime.current == "v1.29.4+k3s1"
    assert runtime.latest == "v1.30.2+k3s1"
    assert runtime.per_node["agent2"] == "v1.28.9+k3s1"


def test_runtime_versions_survive_unreachable_channel(three_nodes):
    logged = []
    error = requests.ConnectionError("no route to host")

    with mock.patch.object(versions.requests, "get", side_effect=error):
        runtime = versions.check_runtime_versions(
            three_nodes, "https://example.test/channels",
            log=lambda message, **kw: logged.append(message),
        )

    assert runtime.latest is None
    assert runtime.current == "v1.29.4+k3s1"
    assert len(runtime.per_node) == 3
    assert any("Failed to fetch latest runtime version" in m for m in logged)


def test_runtime_versions_without_control_plane():
    nodes = [NodeInfo(name="solo", role=NodeRole.WORKER, runtime_version="v1.29.4+k3s1")]

    with mock.patch.object(versions.requests, "get", return_value=_response({"data": []})):
        runtime = versions.check_runtime_versions(nodes, "https://example.test/channels")

    assert runtime.current == "v1.29.4+k3s1"
    assert runtime.latest is None


def test_orchestrator_check_records_versions(orchestrator, executor):
    executor.outputs["agent1"] = APT_OUTPUT
    executor.failures["agent2"] = RemoteExecutionError("SSH to 10.0.0.3 timed out after 120 seconds")

    with mock.patch.object(versions.requests, "get", return_value=_response(CHANNELS)):
        state = orchestrator.check()

    assert state.status == OperationStatus.IDLE
    assert state.operation == OperationKind.NONE
    assert state.versions.os["agent1"].upgradable == 3
    assert state.versions.os["server"].upgradable == 0
    assert state.versions.os["agent2"].upgradable == -1
    assert state.versions.runtime.current == "v1.29.4+k3s1"
    assert state.versions.runtime.latest == "v1.30.2+k3s1"
    assert state.nodes == {}


def test_orchestrator_check_failure_sets_error(orchestrator, cluster):
    cluster.list_nodes = mock.Mock(side_effect=RuntimeError("API server unreachable"))

    with pytest.raises(RuntimeError):
        orchestrator.check()

    state = orchestrator.snapshot()
    assert state.status == OperationStatus.ERROR
    assert state.error == "API server unreachable"


@pytest.mark.parametrize("payload", [
    ["unexpected", "list"],
    {"data": "stable"},
    {"data": ["stable", None]},
])
def test_malformed_channel_payload_leaves_latest_unset(three_nodes, payload):
    with mock.patch.object(versions.requests, "get", return_value=_response(payload)):
        runtime = versions.check_runtime_versions(three_nodes, "https://example.test/channels")

    assert runtime.latest is None
    assert runtime.current == "v1.29.4+k3s1"


def test_malformed_channel_payload_does_not_fail_check(orchestrator):
    with mock.patch.object(versions.requests, "get", return_value=_response(["unexpected", "list"])):
        state = orchestrator.check()

    assert state.status == OperationStatus.IDLE
    assert state.error is None
    assert state.versions.runtime.latest is None
    assert any("Failed to fetch latest runtime version" in e.message for e in state.logs)
