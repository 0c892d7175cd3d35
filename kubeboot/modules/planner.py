"""Machine role planning.

Builds the immutable BootstrapPlan from cluster settings: one coordinator at
the configured address followed by workers at consecutive addresses. The
network plugin is resolved here, once, and never again during the run.
"""
import logging
from typing import Optional

from kubeboot.config import ClusterSettings
from . import addressing, plugins
from .models import BootstrapPlan, MachineSpec, Role

logger = logging.getLogger("kubeboot.planner")


def machine_name(cluster: str, role: Role, index: int = 0) -> str:
    if role == Role.COORDINATOR:
        return f"{cluster}-master"
    return f"{cluster}-node-{index}"


def build_plan(settings: ClusterSettings, plugin_id: Optional[str] = None) -> BootstrapPlan:
    """Build the bootstrap plan.

    Args:
        settings: Cluster settings
        plugin_id: Raw plugin selection; falls back to ``settings.network_plugin``

    Raises:
        ConfigError: Unknown plugin, malformed address or address range exhausted
    """
    raw = plugin_id if plugin_id is not None else settings.network_plugin
    plugin = plugins.resolve(plugins.select_identifier(raw))

    worker_addresses = addressing.allocate(settings.coordinator_address, settings.workers)
    group = settings.display_group

    machines = [
        MachineSpec(
            name=machine_name(settings.name, Role.COORDINATOR),
            role=Role.COORDINATOR,
            address=settings.coordinator_address,
            memory=settings.coordinator.memory,
            cpus=settings.coordinator.cpus,
            group=group,
            box=settings.box,
            box_version=settings.box_version,
        )
    ]
    for index, address in enumerate(worker_addresses, start=1):
        machines.append(MachineSpec(
            name=machine_name(settings.name, Role.WORKER, index),
            role=Role.WORKER,
            address=address,
            memory=settings.worker.memory,
            cpus=settings.worker.cpus,
            group=group,
            box=settings.box,
            box_version=settings.box_version,
        ))

    plan = BootstrapPlan(cluster_name=settings.name, machines=tuple(machines), plugin=plugin)
    logger.info(
        f"🗺️  Planned cluster '{plan.cluster_name}': 1 coordinator + {len(plan.workers)} worker(s), "
        f"network plugin {plugin.identifier}"
    )
    return plan
