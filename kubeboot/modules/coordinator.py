"""Coordinator initialization.

Runs ``kubeadm init`` on the single coordinator, applies the selected
overlay, and mints the join script that every worker consumes.

Failure policy:
- reading the address, ``kubeadm init`` and minting the join script are
  fatal (InitError);
- overlay manifest and service-route failures are logged as
  NetworkApplyError and collected, the credential is still issued.
"""
import logging
import os
from typing import Callable, List, Optional

import requests

from kubeboot.config import ClusterSettings
from kubeboot.errors import CommandError, InitError, NetworkApplyError
from kubeboot.log import redact
from . import commands, plugins
from .backends import MachineBackend
from .models import JoinCredential, MachineSpec, ManifestRef, NetworkPlugin

logger = logging.getLogger("kubeboot.coordinator")

MANIFEST_TIMEOUT = 60


class CoordinatorInitializer:
    """Drives the coordinator through init, overlay install and token minting."""

    def __init__(
        self,
        backend: MachineBackend,
        settings: ClusterSettings,
        fetch: Optional[Callable[..., requests.Response]] = None
    ):
        self.backend = backend
        self.settings = settings
        self.fetch = fetch or requests.get
        self.network_errors: List[NetworkApplyError] = []

    @property
    def manifest_dir(self) -> str:
        return f"{self.settings.state_dir}/manifests"

    def initialize(self, machine: MachineSpec, plugin: NetworkPlugin) -> JoinCredential:
        """Initialize the cluster on ``machine`` and return the join credential.

        Raises:
            InitError: If the address cannot be read, init fails, or no join
                credential can be minted
        """
        self.network_errors = []
        address = self.advertise_address(machine)
        self.init_cluster(machine, address, plugin)
        self.install_admin_kubeconfig(machine)
        if plugin.node_route:
            self.apply_static_route(machine)
        self.apply_network(machine, plugin)
        credential = self.mint_join_credential(machine)
        self.authorize_trust_key(machine)
        logger.info(f"✅ [{machine.name}] Coordinator initialized, join endpoint {credential.endpoint}")
        return credential

    def advertise_address(self, machine: MachineSpec) -> str:
        try:
            address = self.backend.interface_address(machine, self.settings.interface)
        except (CommandError, LookupError) as e:
            raise InitError(machine.name, f"Cannot read address of {self.settings.interface}: {e}") from e
        if address != machine.address:
            logger.warning(
                f"⚠️  [{machine.name}] {self.settings.interface} carries {address}, planned {machine.address}"
            )
        return address

    def init_cluster(self, machine: MachineSpec, address: str, plugin: NetworkPlugin) -> None:
        if self.backend.exists(machine, commands.ADMIN_KUBECONFIG):
            logger.info(f"⏭️  [{machine.name}] Cluster already initialized, skipping kubeadm init")
            return
        argv = commands.kubeadm_init(address, plugin.cidr)
        logger.info(f"🧭 [{machine.name}] {' '.join(argv)}")
        try:
            self.backend.run(machine, argv)
        except CommandError as e:
            raise InitError(machine.name, f"kubeadm init failed: {e}") from e

    def install_admin_kubeconfig(self, machine: MachineSpec) -> None:
        user = self.backend.user
        dest = f"{commands.home_dir(user)}/.kube/config"
        try:
            self.backend.run(machine, commands.install_file(commands.ADMIN_KUBECONFIG, dest, owner=user))
        except CommandError as e:
            raise InitError(machine.name, f"Cannot install admin kubeconfig for {user}: {e}") from e
        logger.info(f"🔐 [{machine.name}] Admin kubeconfig installed at {dest}")

    def apply_static_route(self, machine: MachineSpec) -> None:
        """Route the cluster service address via the coordinator's own host-only address."""
        argv = commands.route_replace(self.settings.service_address, machine.address)
        try:
            self.backend.run(machine, argv)
        except CommandError as e:
            error = NetworkApplyError(machine.name, f"route to {self.settings.service_address}: {e}")
            logger.error(f"❌ {error}; continuing with degraded networking")
            self.network_errors.append(error)
            return
        logger.info(f"🛣️  [{machine.name}] Route {self.settings.service_address} via {machine.address}")

    def apply_network(self, machine: MachineSpec, plugin: NetworkPlugin) -> None:
        """Apply the overlay manifests in catalog order; failures are collected, not raised."""
        logger.info(f"🌐 [{machine.name}] Applying {plugin.identifier} network plugin")
        for manifest in plugin.manifests:
            try:
                reference = self.manifest_reference(machine, plugin, manifest)
                self.backend.run(machine, commands.kubectl_apply(reference, server_side=manifest.server_side))
                logger.info(f"✅ [{machine.name}] Applied {manifest.name}")
            except (CommandError, requests.RequestException, ValueError) as e:
                error = NetworkApplyError(machine.name, f"{plugin.identifier}/{manifest.name}: {e}")
                logger.error(f"❌ {error}; continuing with degraded networking")
                self.network_errors.append(error)

    def manifest_reference(self, machine: MachineSpec, plugin: NetworkPlugin, manifest: ManifestRef) -> str:
        """Return the URL or coordinator-local path kubectl should apply."""
        if manifest.dynamic:
            version = self.backend.run(machine, commands.kubectl_version()).stdout
            return plugins.weave_manifest_url(version)
        if plugin.host_workaround and manifest.patch is not None:
            return self.stage_patched_manifest(machine, manifest)
        return manifest.url

    def stage_patched_manifest(self, machine: MachineSpec, manifest: ManifestRef) -> str:
        """Download a manifest, point it at the host-only adapter and stage it on the coordinator."""
        response = self.fetch(manifest.url, timeout=MANIFEST_TIMEOUT)
        response.raise_for_status()
        patched = manifest.patch.apply(response.text, self.settings.interface)
        path = f"{self.manifest_dir}/{manifest.name}"
        self.backend.write_file(machine, path, patched)
        logger.info(f"🩹 [{machine.name}] {manifest.name} patched for interface {self.settings.interface}")
        return path

    def mint_join_credential(self, machine: MachineSpec) -> JoinCredential:
        path = self.settings.join_script_path
        try:
            if self.backend.exists(machine, path):
                logger.info(f"⏭️  [{machine.name}] Reusing existing join script {path}")
                script = self.backend.read_file(machine, path)
            else:
                join_command = self.backend.run(machine, commands.kubeadm_print_join(self.settings.token_ttl)).stdout
                script = f"#!/bin/sh\n{join_command.strip()}\n"
                self.backend.write_file(machine, path, script, mode="0755")
                logger.info(f"🎟️  [{machine.name}] Join script written to {path}")
            credential = JoinCredential.from_script(script, path)
        except (CommandError, ValueError) as e:
            raise InitError(machine.name, f"Cannot mint join credential: {e}") from e
        logger.debug(f"[{machine.name}] {redact(credential.script.strip())}")
        return credential

    def authorize_trust_key(self, machine: MachineSpec) -> None:
        """Let workers holding the shared key pair copy files from the coordinator."""
        user = self.backend.user
        authorized_keys = f"{commands.home_dir(user)}/.ssh/authorized_keys"
        key_name = os.path.basename(self.settings.ssh.private_key_path)
        public_key_path = f"{commands.home_dir(user)}/.ssh/{key_name}.pub"
        try:
            public_key = self.backend.read_file(machine, public_key_path).strip()
            current = ''
            if self.backend.exists(machine, authorized_keys):
                current = self.backend.read_file(machine, authorized_keys)
            if public_key in current.splitlines():
                return
            content = current if not current or current.endswith("\n") else current + "\n"
            self.backend.write_file(machine, authorized_keys, f"{content}{public_key}\n", mode="0600", owner=user)
        except CommandError as e:
            raise InitError(machine.name, f"Cannot authorize trust key: {e}") from e
        logger.info(f"🔑 [{machine.name}] Trust key added to {authorized_keys}")
