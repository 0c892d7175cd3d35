"""Host-side copy of the cluster admin kubeconfig."""
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

from . import commands
from .backends import MachineBackend
from .models import MachineSpec

logger = logging.getLogger("kubeboot.kubeconfig")


def kubeconfig_path(directory: str, cluster_name: str) -> Path:
    return Path(directory).expanduser() / f"kubeboot-{cluster_name}.conf"


def rename_kubeconfig(data: Dict[str, Any], cluster_name: str, server: str) -> Dict[str, Any]:
    """Give the cluster, user and context unique names so several configs can be merged."""
    user_name = f"{cluster_name}-admin"
    for cluster in data.get("clusters", []):
        cluster["name"] = cluster_name
        cluster.setdefault("cluster", {})["server"] = server
    for user in data.get("users", []):
        user["name"] = user_name
    for context in data.get("contexts", []):
        context["name"] = cluster_name
        context.setdefault("context", {}).update({"cluster": cluster_name, "user": user_name})
    data["current-context"] = cluster_name
    return data


def export_kubeconfig(backend: MachineBackend, machine: MachineSpec, cluster_name: str, directory: str) -> Path:
    """Copy admin.conf from the coordinator to ``directory`` on the host.

    The API server address is rewritten to the coordinator's host-only address.
    """
    content = backend.read_file(machine, commands.ADMIN_KUBECONFIG)
    data = yaml.safe_load(content) or {}
    rename_kubeconfig(data, cluster_name, f"https://{machine.address}:6443")

    path = kubeconfig_path(directory, cluster_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    os.chmod(path, 0o600)
    logger.info(f"✅ Kubeconfig saved to: {path}")
    return path
