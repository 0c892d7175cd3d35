"""Worker join: fetch the coordinator's join script and run it."""
import logging
import os
from typing import Optional

from kubeboot.config import ClusterSettings
from kubeboot.errors import CommandError, JoinError
from . import commands
from .backends import MachineBackend
from .models import JoinCredential, MachineSpec, NetworkPlugin

logger = logging.getLogger("kubeboot.joiner")

LOCAL_JOIN_SCRIPT = "/tmp/kubeboot-join.sh"


class WorkerJoiner:
    """Attaches one worker to an initialized cluster."""

    def __init__(self, backend: MachineBackend, settings: ClusterSettings):
        self.backend = backend
        self.settings = settings

    def join(
        self,
        machine: MachineSpec,
        coordinator_address: str,
        plugin: NetworkPlugin,
        credential: Optional[JoinCredential] = None
    ) -> bool:
        """Join ``machine`` to the cluster run by ``coordinator_address``.

        Args:
            machine: Worker to join
            coordinator_address: Address the join script is fetched from
            plugin: Active network plugin; decides the per-worker route workaround
            credential: When given, the fetched script must match it

        Returns:
            bool: False if the worker had already joined

        Raises:
            JoinError: If the route, fetch or join step fails
        """
        if plugin.node_route:
            self.apply_static_route(machine, coordinator_address)

        try:
            if self.backend.exists(machine, commands.KUBELET_KUBECONFIG):
                logger.info(f"⏭️  [{machine.name}] Already joined, skipping")
                return False
        except CommandError as e:
            raise JoinError(machine.name, f"Cannot inspect join state: {e}") from e

        self.fetch_join_script(machine, coordinator_address, credential)

        logger.info(f"🔗 [{machine.name}] Joining cluster at {coordinator_address}")
        try:
            self.backend.run(machine, commands.run_script(LOCAL_JOIN_SCRIPT))
        except CommandError as e:
            raise JoinError(machine.name, f"Join script failed: {e}") from e
        logger.info(f"✅ [{machine.name}] Joined")
        return True

    def apply_static_route(self, machine: MachineSpec, coordinator_address: str) -> None:
        """Route the cluster service address via the coordinator."""
        argv = commands.route_replace(self.settings.service_address, coordinator_address)
        try:
            self.backend.run(machine, argv)
        except CommandError as e:
            raise JoinError(machine.name, f"Cannot add route to {self.settings.service_address}: {e}") from e
        logger.info(f"🛣️  [{machine.name}] Route {self.settings.service_address} via {coordinator_address}")

    def fetch_join_script(
        self,
        machine: MachineSpec,
        coordinator_address: str,
        credential: Optional[JoinCredential] = None
    ) -> str:
        user = self.backend.user
        key_path = f"{commands.home_dir(user)}/.ssh/{os.path.basename(self.settings.ssh.private_key_path)}"
        argv = commands.scp_fetch(
            key_path, user, coordinator_address, self.settings.join_script_path, LOCAL_JOIN_SCRIPT
        )
        try:
            self.backend.run(machine, argv)
            script = self.backend.read_file(machine, LOCAL_JOIN_SCRIPT)
        except CommandError as e:
            raise JoinError(machine.name, f"Cannot fetch join script from {coordinator_address}: {e}") from e

        if credential is not None and script.strip() != credential.script.strip():
            raise JoinError(machine.name, "Fetched join script does not match the credential minted for this run")
        return script
