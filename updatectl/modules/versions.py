"""Read-only discovery of available OS package and runtime upgrades."""
import logging
import re
from typing import Callable, Dict, Iterable, List, Optional

import requests

from .models import NodeInfo, NodeRole, OsCheckResult, RuntimeVersions

logger = logging.getLogger("updatectl.versions")

APT_LIST_UPGRADABLE = "sudo apt-get update -qq 2>/dev/null && apt list --upgradable 2>/dev/null"

_SUMMARY_LINE = re.compile(r"^\d+ packages? can be upgraded")

LogFn = Callable[..., None]


def parse_upgradable(output: str) -> List[str]:
    """Package names from ``apt list --upgradable`` output.

    Entries look like ``curl/jammy-updates 7.81.0-1ubuntu1.16 amd64 [...]``;
    headers, warnings and notices are dropped.
    """
    packages = []
    for line in output.strip().splitlines():
        line = line.strip()
        if not line or line.startswith(("Listing", "WARNING", "N:")):
            continue
        if "/" not in line or _SUMMARY_LINE.match(line):
            continue
        name = line.split("/", 1)[0]
        if name:
            packages.append(name)
    return packages


def check_os_updates(
    nodes: Iterable[NodeInfo],
    executor,
    timeout: int = 120,
    log: Optional[LogFn] = None,
) -> Dict[str, OsCheckResult]:
    """List upgradable packages on every node.

    A failing node is recorded with ``upgradable == -1`` and its error; the
    remaining nodes are still checked.
    """
    log = log or (lambda message, level='info', node=None: None)
    results: Dict[str, OsCheckResult] = {}
    for node in nodes:
        log('Checking for upgradable packages...', node=node.name)
        try:
            output = executor.execute(node.name, APT_LIST_UPGRADABLE, timeout=timeout, address=node.address)
        except Exception as e:
            log(f'Failed to check OS updates: {e}', level='warn', node=node.name)
            results[node.name] = OsCheckResult(upgradable=-1, error=str(e))
            continue
        packages = parse_upgradable(output)
        results[node.name] = OsCheckResult(upgradable=len(packages), packages=packages)
        log(f'{len(packages)} package(s) upgradable', node=node.name)
    return results


def fetch_latest_release(channel_url: str, channel: str = "stable", timeout: int = 15) -> Optional[str]:
    """Latest version published on ``channel`` of the runtime's release channel server."""
    logger.debug(f"Fetching release channels from {channel_url}")
    response = requests.get(channel_url, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    entries = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        raise ValueError(f"Unexpected release channel payload from {channel_url}")
    for entry in entries:
        if isinstance(entry, dict) and entry.get("id") == channel:
            return entry.get("latest")
    return None


def check_runtime_versions(
    nodes: Iterable[NodeInfo],
    channel_url: str,
    channel: str = "stable",
    timeout: int = 15,
    log: Optional[LogFn] = None,
) -> RuntimeVersions:
    """Per-node runtime versions from node metadata plus the latest release.

    ``current`` is the control plane's version (first node when there is no
    control plane). An unreachable release channel leaves ``latest`` unset.
    """
    log = log or (lambda message, level='info', node=None: None)
    nodes = list(nodes)
    per_node = {n.name: n.runtime_version for n in nodes}

    servers = [n for n in nodes if n.role == NodeRole.CONTROL_PLANE]
    reference = servers[0] if servers else (nodes[0] if nodes else None)
    current = reference.runtime_version if reference else None

    latest = None
    try:
        latest = fetch_latest_release(channel_url, channel, timeout)
    except (requests.RequestException, ValueError) as e:
        log(f'Failed to fetch latest runtime version: {e}', level='warn')

    return RuntimeVersions(current=current, latest=latest, per_node=per_node)
