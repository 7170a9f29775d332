import os
from pathlib import Path
from typing import Optional

import yaml
from kubernetes import config
from kubernetes.config.config_exception import ConfigException

# Written by the k3s server install script.
K3S_KUBECONFIG = Path("/etc/rancher/k3s/k3s.yaml")


def load_kubeconfig(path: Optional[str] = None) -> str:
    """
    Load cluster credentials into the kubernetes client.

    Sources, first match wins: inline ``KUBECONFIG_CONTENT``, ``path``, the
    in-cluster service account, ``~/.kube/config`` (or ``$KUBECONFIG``), and
    the k3s server kubeconfig. Returns a short description of the source.
    """
    content = os.environ.get("KUBECONFIG_CONTENT")
    if content:
        config.load_kube_config_from_dict(yaml.safe_load(content))
        return "KUBECONFIG_CONTENT"

    if path:
        kubeconfig = Path(path).expanduser().resolve()
        if not kubeconfig.exists():
            raise FileNotFoundError(f"Kubeconfig not found: {kubeconfig}")
        config.load_kube_config(config_file=str(kubeconfig))
        return str(kubeconfig)

    try:
        config.load_incluster_config()
        return "in-cluster"
    except ConfigException:
        pass

    try:
        config.load_kube_config()
        return os.environ.get("KUBECONFIG", "~/.kube/config")
    except ConfigException:
        if not K3S_KUBECONFIG.exists():
            raise
    config.load_kube_config(config_file=str(K3S_KUBECONFIG))
    return str(K3S_KUBECONFIG)
