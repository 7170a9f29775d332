from types import SimpleNamespace
from unittest import mock

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from updatectl.errors import NodeNotReadyError
from updatectl.modules import kube
from updatectl.modules.kube import KubeClusterClient, is_evictable, node_role, to_node_info
from updatectl.modules.models import NodeRole
from updatectl.utils import kube as kube_utils


def _node(name, labels=None, ip="10.0.0.1", arch="amd64", version="v1.29.4+k3s1", ready="True"):
    # Same attribute shape as V1Node, limited to the fields the client reads.
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, labels=labels or {}),
        status=SimpleNamespace(
            addresses=[
                SimpleNamespace(type="Hostname", address=name),
                SimpleNamespace(type="InternalIP", address=ip),
            ],
            conditions=[SimpleNamespace(type="Ready", status=ready)],
            node_info=SimpleNamespace(architecture=arch, kubelet_version=version),
        ),
    )


def _pod(name, namespace="default", owner_kind="ReplicaSet", annotations=None, phase="Running"):
    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            annotations=annotations,
            owner_references=[
                client.V1OwnerReference(api_version="apps/v1", kind=owner_kind, name="owner", uid="1")
            ],
        ),
        status=client.V1PodStatus(phase=phase),
    )


@pytest.fixture
def core():
    return mock.MagicMock()


@pytest.fixture
def kube_client(core):
    return KubeClusterClient(core_api=core, poll_interval=0, drain_timeout=1)


def test_node_role_from_labels():
    assert node_role({"node-role.kubernetes.io/control-plane": "true"}) == NodeRole.CONTROL_PLANE
    assert node_role({"node-role.kubernetes.io/master": "true"}) == NodeRole.CONTROL_PLANE
    assert node_role({"kubernetes.io/hostname": "agent1"}) == NodeRole.WORKER
    assert node_role(None) == NodeRole.WORKER


def test_to_node_info():
    info = to_node_info(_node("agent2", ip="10.0.0.3", arch="arm64"))

    assert info.name == "agent2"
    assert info.role == NodeRole.WORKER
    assert info.address == "10.0.0.3"
    assert info.architecture == "arm64"
    assert info.runtime_version == "v1.29.4+k3s1"


def test_list_nodes(kube_client, core):
    core.list_node.return_value = SimpleNamespace(items=[
        _node("server", labels={"node-role.kubernetes.io/control-plane": "true"}),
        _node("agent1", ip="10.0.0.2"),
    ])

    nodes = kube_client.list_nodes()

    assert [(n.name, n.role, n.address, n.architecture) for n in nodes] == [
        ("server", NodeRole.CONTROL_PLANE, "10.0.0.1", "amd64"),
        ("agent1", NodeRole.WORKER, "10.0.0.2", "amd64"),
    ]


def test_to_node_info_before_status_is_reported():
    info = to_node_info(SimpleNamespace(metadata=SimpleNamespace(name="fresh", labels=None), status=None))

    assert info.role == NodeRole.WORKER
    assert (info.address, info.runtime_version, info.architecture) == (None, None, None)


def test_cordon_and_uncordon_patch_unschedulable(kube_client, core):
    kube_client.cordon("agent1")
    kube_client.uncordon("agent1")

    assert core.patch_node.call_args_list == [
        mock.call("agent1", {"spec": {"unschedulable": True}}),
        mock.call("agent1", {"spec": {"unschedulable": False}}),
    ]


def test_evictable_pods():
    assert is_evictable(_pod("web"))
    assert not is_evictable(_pod("fluentd", owner_kind="DaemonSet"))
    assert not is_evictable(_pod("etcd", annotations={"kubernetes.io/config.mirror": "abc"}))
    assert not is_evictable(_pod("job", phase="Succeeded"))


def test_drain_evicts_only_evictable_pods(kube_client, core):
    pods = [_pod("web"), _pod("fluentd", owner_kind="DaemonSet"), _pod("api", namespace="prod")]
    core.list_pod_for_all_namespaces.side_effect = [
        client.V1PodList(items=pods),
        client.V1PodList(items=[pods[1]]),
    ]

    assert kube_client.drain("agent1") == 2

    evicted = [c.kwargs["name"] for c in core.create_namespaced_pod_eviction.call_args_list]
    assert evicted == ["web", "api"]
    core.list_pod_for_all_namespaces.assert_called_with(field_selector="spec.nodeName=agent1")


def test_drain_retries_when_budget_blocks(kube_client, core):
    core.list_pod_for_all_namespaces.side_effect = [
        client.V1PodList(items=[_pod("web")]),
        client.V1PodList(items=[]),
    ]
    core.create_namespaced_pod_eviction.side_effect = [ApiException(status=429), None]

    assert kube_client.drain("agent1") == 1
    assert core.create_namespaced_pod_eviction.call_count == 2


def test_drain_treats_vanished_pod_as_evicted(kube_client, core):
    core.list_pod_for_all_namespaces.side_effect = [
        client.V1PodList(items=[_pod("web")]),
        client.V1PodList(items=[]),
    ]
    core.create_namespaced_pod_eviction.side_effect = ApiException(status=404)

    assert kube_client.drain("agent1") == 1


def test_drain_times_out(kube_client, core):
    core.list_pod_for_all_namespaces.return_value = client.V1PodList(items=[_pod("web")])
    core.create_namespaced_pod_eviction.side_effect = ApiException(status=429)

    with pytest.raises(NodeNotReadyError, match="Timed out draining agent1"):
        kube_client.drain("agent1", timeout=0)


def test_drain_propagates_other_api_errors(kube_client, core):
    core.list_pod_for_all_namespaces.return_value = client.V1PodList(items=[_pod("web")])
    core.create_namespaced_pod_eviction.side_effect = ApiException(status=500)

    with pytest.raises(ApiException):
        kube_client.drain("agent1")


def test_wait_ready_tolerates_api_errors(kube_client, core):
    core.read_node.side_effect = [
        ApiException(status=503),
        _node("server", ready="False"),
        _node("server", ready="True"),
    ]

    kube_client.wait_ready("server", timeout=5)

    assert core.read_node.call_count == 3


def test_wait_ready_times_out(kube_client, core):
    core.read_node.return_value = _node("agent1", ready="Unknown")

    with mock.patch.object(kube.time, "sleep"):
        with pytest.raises(NodeNotReadyError, match="not Ready after 0s"):
            kube_client.wait_ready("agent1", timeout=0)


def test_kubeconfig_from_inline_content(monkeypatch):
    loaded = []
    monkeypatch.setenv("KUBECONFIG_CONTENT", "apiVersion: v1\nkind: Config\nclusters: []\n")
    monkeypatch.setattr(kube_utils.config, "load_kube_config_from_dict", loaded.append)

    assert kube_utils.load_kubeconfig("/does/not/matter") == "KUBECONFIG_CONTENT"
    assert loaded == [{"apiVersion": "v1", "kind": "Config", "clusters": []}]


def test_missing_kubeconfig_path(monkeypatch, tmp_path):
    monkeypatch.delenv("KUBECONFIG_CONTENT", raising=False)

    with pytest.raises(FileNotFoundError):
        kube_utils.load_kubeconfig(str(tmp_path / "absent.yaml"))
