"""Post-bootstrap node check through the Kubernetes API."""
from pathlib import Path
from typing import Any, Dict, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException


def _ready(node) -> bool:
    for condition in (node.status.conditions or []):
        if condition.type == "Ready":
            return condition.status == "True"
    return False


def node_status(kubeconfig: str, api: Optional[client.CoreV1Api] = None) -> Dict[str, Any]:
    """List cluster nodes and whether each reports Ready."""
    if api is None:
        path = Path(kubeconfig).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"❌ Kubeconfig not found: {path}")
        api_client = config.new_client_from_config(config_file=str(path))
        api = client.CoreV1Api(api_client)

    try:
        nodes = api.list_node().items
    except ApiException as e:
        return {"status": "error", "details": e.body}

    ready = {node.metadata.name: _ready(node) for node in nodes}
    return {
        "status": "ok",
        "nodes": ready,
        "ready": sum(1 for value in ready.values() if value),
        "total": len(ready),
    }
