import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from kubeboot.config import Config


def registry_path(path: Optional[str] = None) -> Path:
    return Path(os.path.expanduser(path or Config.REGISTRY_PATH))


def load_registry(path: Optional[str] = None) -> Dict[str, dict]:
    registry = registry_path(path)
    if registry.exists():
        with open(registry, "r") as f:
            return json.load(f)
    return {}


def save_registry(data: Dict[str, dict], path: Optional[str] = None) -> None:
    registry = registry_path(path)
    registry.parent.mkdir(parents=True, exist_ok=True)
    with open(registry, "w") as f:
        json.dump(data, f, indent=2)


def register_cluster(name, kubeconfig, coordinator, plugin, workers, path=None):
    registry = load_registry(path)
    registry[name] = {
        "kubeconfig": str(kubeconfig),
        "coordinator": coordinator,
        "network_plugin": plugin,
        "workers": workers,
    }
    save_registry(registry, path)


def kubeconfig_env(names: List[str], path: Optional[str] = None) -> str:
    """Build a KUBECONFIG value selecting the given clusters, in order."""
    registry = load_registry(path)
    missing = [n for n in names if n not in registry]
    if missing:
        raise KeyError(f"Unknown cluster(s): {', '.join(missing)}")
    return os.pathsep.join(registry[n]["kubeconfig"] for n in names)
