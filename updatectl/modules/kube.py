"""Cluster control operations through the Kubernetes API."""
import logging
import time
from typing import List, Optional

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException

from updatectl.errors import NodeNotReadyError
from updatectl.utils.kube import load_kubeconfig
from .models import NodeInfo, NodeRole

logger = logging.getLogger("updatectl.kube")

CONTROL_PLANE_LABELS = (
    "node-role.kubernetes.io/control-plane",
    "node-role.kubernetes.io/master",
)
MIRROR_POD_ANNOTATION = "kubernetes.io/config.mirror"


def node_role(labels: Optional[dict]) -> NodeRole:
    """Classify a node by its ``node-role.kubernetes.io/*`` labels."""
    labels = labels or {}
    if any(label in labels for label in CONTROL_PLANE_LABELS):
        return NodeRole.CONTROL_PLANE
    return NodeRole.WORKER


def node_is_ready(node) -> bool:
    conditions = (node.status.conditions if node.status else None) or []
    return any(c.type == "Ready" and c.status == "True" for c in conditions)


def to_node_info(node) -> NodeInfo:
    """Convert a ``V1Node`` into the inventory record used by rollouts."""
    addresses = (node.status.addresses if node.status else None) or []
    internal_ip = next((a.address for a in addresses if a.type == "InternalIP"), None)
    node_info = node.status.node_info if node.status else None
    return NodeInfo(
        name=node.metadata.name,
        role=node_role(node.metadata.labels),
        address=internal_ip,
        runtime_version=node_info.kubelet_version if node_info else None,
        architecture=node_info.architecture if node_info else None,
    )


def is_evictable(pod) -> bool:
    """DaemonSet pods, mirror pods and finished pods are left alone by a drain."""
    annotations = pod.metadata.annotations or {}
    if MIRROR_POD_ANNOTATION in annotations:
        return False
    owners = pod.metadata.owner_references or []
    if any(owner.kind == "DaemonSet" for owner in owners):
        return False
    phase = pod.status.phase if pod.status else None
    return phase not in ("Succeeded", "Failed")


class KubeClusterClient:
    """Node inventory, cordon, drain, uncordon and readiness waits."""

    def __init__(
        self,
        core_api: Optional[client.CoreV1Api] = None,
        kubeconfig: Optional[str] = None,
        poll_interval: float = 5,
        drain_timeout: int = 300,
    ):
        if core_api is None:
            source = load_kubeconfig(kubeconfig)
            logger.debug(f"Loaded cluster credentials from {source}")
            core_api = client.CoreV1Api()
        self.core = core_api
        self.poll_interval = poll_interval
        self.drain_timeout = drain_timeout

    @classmethod
    def from_config(cls, config) -> 'KubeClusterClient':
        return cls(
            kubeconfig=config.kubeconfig,
            poll_interval=config.upgrade.poll_interval,
            drain_timeout=config.upgrade.drain_timeout,
        )

    def list_nodes(self) -> List[NodeInfo]:
        return [to_node_info(n) for n in self.core.list_node().items]

    def cordon(self, name: str) -> None:
        logger.debug(f"Cordoning {name}")
        self.core.patch_node(name, {"spec": {"unschedulable": True}})

    def uncordon(self, name: str) -> None:
        logger.debug(f"Uncordoning {name}")
        self.core.patch_node(name, {"spec": {"unschedulable": False}})

    def _pods_on_node(self, name: str) -> list:
        pods = self.core.list_pod_for_all_namespaces(field_selector=f"spec.nodeName={name}").items
        return [p for p in pods if is_evictable(p)]

    def _evict(self, pod) -> bool:
        """Request eviction of ``pod``; False when a disruption budget blocks it for now."""
        body = client.V1Eviction(
            metadata=client.V1ObjectMeta(name=pod.metadata.name, namespace=pod.metadata.namespace)
        )
        try:
            self.core.create_namespaced_pod_eviction(
                name=pod.metadata.name, namespace=pod.metadata.namespace, body=body
            )
        except ApiException as e:
            if e.status == 404:
                return True
            if e.status == 429:
                logger.debug(f"Eviction of {pod.metadata.namespace}/{pod.metadata.name} blocked, retrying")
                return False
            raise
        return True

    def drain(self, name: str, timeout: Optional[int] = None) -> int:
        """Evict every evictable pod from ``name`` and wait until they are gone.

        Returns the number of pods evicted.

        Raises:
            NodeNotReadyError: If pods are still present after ``timeout``.
        """
        timeout = self.drain_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        pending = {(p.metadata.namespace, p.metadata.name): p for p in self._pods_on_node(name)}
        evicted = len(pending)
        logger.debug(f"Draining {name}: {evicted} pod(s) to evict")

        while pending:
            for key, pod in list(pending.items()):
                if self._evict(pod):
                    del pending[key]
            if not pending:
                break
            if time.monotonic() >= deadline:
                raise NodeNotReadyError(
                    f"Timed out draining {name}: {len(pending)} pod(s) could not be evicted"
                )
            time.sleep(self.poll_interval)

        while self._pods_on_node(name):
            if time.monotonic() >= deadline:
                raise NodeNotReadyError(f"Timed out waiting for pods to leave {name}")
            time.sleep(self.poll_interval)

        return evicted

    def wait_ready(self, name: str, timeout: int) -> None:
        """Poll ``name`` until its Ready condition is True.

        Raises:
            NodeNotReadyError: If the node is not Ready within ``timeout`` seconds.
        """
        deadline = time.monotonic() + timeout
        while True:
            try:
                if node_is_ready(self.core.read_node(name)):
                    return
            except (ApiException, urllib3.exceptions.HTTPError) as e:
                # The API server itself restarts during a server upgrade.
                logger.debug(f"Node {name} not readable yet: {e}")
            if time.monotonic() >= deadline:
                raise NodeNotReadyError(f"Node {name} not Ready after {timeout}s")
            time.sleep(self.poll_interval)
