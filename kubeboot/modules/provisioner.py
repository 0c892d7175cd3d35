"""Node provisioning: identical for every role.

Brings a bare machine to the point where kubeadm can run: trust material
staged, kernel prerequisites applied, swap off, container runtime and
kubelet/kubeadm/kubectl installed. A marker file makes reruns skip the
package work on machines that already completed it.
"""
import logging
import os
import time
from typing import Tuple

from kubeboot.config import ClusterSettings
from kubeboot.errors import CommandError, ProvisionError
from . import commands
from .backends import MachineBackend
from .models import MachineSpec

logger = logging.getLogger("kubeboot.provisioner")

KERNEL_MODULES = ("overlay", "br_netfilter")

SYSCTL_SETTINGS = """\
net.bridge.bridge-nf-call-iptables  = 1
net.bridge.bridge-nf-call-ip6tables = 1
net.ipv4.ip_forward                 = 1
"""


class NodeProvisioner:
    """Installs the runtime and orchestration agent on one machine."""

    def __init__(self, backend: MachineBackend, settings: ClusterSettings):
        self.backend = backend
        self.settings = settings
        self.packages = commands.PackageManager(settings.package_manager, settings.kubernetes_version)

    @property
    def marker(self) -> str:
        return f"{self.settings.state_dir}/provisioned"

    def provision(self, machine: MachineSpec) -> bool:
        """Provision a machine.

        Returns:
            bool: False if the machine was already provisioned and only the
            trust material was refreshed

        Raises:
            ProvisionError: If launching or any install step fails
        """
        start_time = time.time()
        logger.info(f"🛠  [{machine.name}] Provisioning {machine.role.value} at {machine.address}")
        try:
            self.backend.launch(machine)
            self.stage_trust_material(machine)
            if self.backend.exists(machine, self.marker):
                logger.info(f"⏭️  [{machine.name}] Already provisioned, skipping package install")
                return False
            self.prepare_kernel(machine)
            self.disable_swap(machine)
            self.install_packages(machine)
            self.configure_runtime(machine)
            self.configure_kubelet(machine)
            self.backend.write_file(machine, self.marker, f"{int(time.time())}\n")
        except (CommandError, OSError) as e:
            raise ProvisionError(machine.name, str(e)) from e

        logger.info(f"✅ [{machine.name}] Provisioned in {time.time() - start_time:.1f}s")
        return True

    def _key_pair(self) -> Tuple[str, str]:
        with open(self.settings.ssh.private_key_path, 'r') as f:
            private_key = f.read()
        with open(self.settings.ssh.public_key, 'r') as f:
            public_key = f.read()
        return private_key, public_key

    def stage_trust_material(self, machine: MachineSpec) -> None:
        """Copy the shared key pair into the operating user's ~/.ssh."""
        user = self.backend.user
        private_key, public_key = self._key_pair()
        ssh_dir = f"{commands.home_dir(user)}/.ssh"
        key_name = os.path.basename(self.settings.ssh.private_key_path)
        self.backend.run(machine, commands.mkdir(ssh_dir, owner=user, mode="0700"))
        self.backend.write_file(machine, f"{ssh_dir}/{key_name}", private_key, mode="0600", owner=user)
        self.backend.write_file(machine, f"{ssh_dir}/{key_name}.pub", public_key, mode="0644", owner=user)
        logger.debug(f"[{machine.name}] Trust material staged in {ssh_dir}")

    def prepare_kernel(self, machine: MachineSpec) -> None:
        self.backend.write_file(machine, "/etc/modules-load.d/k8s.conf", "\n".join(KERNEL_MODULES) + "\n")
        for module in KERNEL_MODULES:
            self.backend.run(machine, commands.modprobe(module))
        self.backend.write_file(machine, "/etc/sysctl.d/k8s.conf", SYSCTL_SETTINGS)
        self.backend.run(machine, commands.sysctl_reload())

    def disable_swap(self, machine: MachineSpec) -> None:
        self.backend.run(machine, commands.swapoff())
        self.backend.run(machine, commands.disable_swap_in_fstab())

    def install_packages(self, machine: MachineSpec) -> None:
        pm = self.packages
        env = pm.environment()
        logger.info(f"📦 [{machine.name}] Installing containerd and kubernetes {pm.version} packages ({pm.family})")
        self.backend.run(machine, pm.refresh(), env=env)
        self.backend.run(machine, pm.prerequisites(), env=env)
        fetch_key = pm.fetch_key()
        if fetch_key:
            self.backend.run(machine, commands.mkdir(os.path.dirname(pm.keyring)))
            self.backend.run(machine, fetch_key)
        self.backend.write_file(machine, pm.repo_file, pm.repo_definition())
        self.backend.run(machine, pm.refresh(), env=env)
        self.backend.run(machine, pm.install(pm.RUNTIME_PACKAGES + pm.AGENT_PACKAGES), env=env)

    def configure_runtime(self, machine: MachineSpec) -> None:
        """Write a default containerd config with the systemd cgroup driver."""
        default = self.backend.run(machine, ["containerd", "config", "default"]).stdout
        config = default.replace("SystemdCgroup = false", "SystemdCgroup = true")
        self.backend.write_file(machine, "/etc/containerd/config.toml", config)
        self.backend.run(machine, commands.systemctl_restart("containerd"))

    def configure_kubelet(self, machine: MachineSpec) -> None:
        """Pin the kubelet to the host-only address; the NAT adapter is the default route."""
        self.backend.write_file(
            machine,
            self.packages.kubelet_defaults,
            f"KUBELET_EXTRA_ARGS=--node-ip={machine.address}\n"
        )
        self.backend.run(machine, commands.systemctl_enable("containerd", "kubelet"))
