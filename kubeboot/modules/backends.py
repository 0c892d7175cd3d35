"""Machine backends: launch machines and run commands on them.

A backend is the boundary to the hypervisor and the remote-execution
channel. Commands are always argument vectors; each backend decides how to
carry them to the machine (``multipass exec``, ``vagrant ssh``, paramiko).
"""
import json
import logging
import os
import re
import shlex
import socket
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import paramiko
import yaml

from kubeboot.config import ClusterSettings
from kubeboot.errors import CommandError
from kubeboot.log import redact
from . import commands
from .models import BootstrapPlan, MachineSpec

logger = logging.getLogger("kubeboot.backends")

INET_PATTERN = re.compile(r'\binet (\d{1,3}(?:\.\d{1,3}){3})/\d+')


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class MachineBackend:
    """Base class for machine backends."""

    name = 'base'
    default_user = 'root'

    def __init__(self, settings: ClusterSettings):
        self.settings = settings

    @property
    def user(self) -> str:
        """The operating user that owns the kubeconfig and trust material."""
        return self.settings.ssh.user or self.default_user

    def prepare(self, plan: BootstrapPlan) -> None:
        """Hook called once with the full plan before any machine is launched."""

    def launch(self, machine: MachineSpec) -> bool:
        """Make sure ``machine`` exists and is running.

        Returns:
            bool: True if the machine was created by this call
        """
        raise NotImplementedError

    def _execute(self, machine: MachineSpec, argv: List[str], input: Optional[str],
                 timeout: Optional[int]) -> CommandResult:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def _wrap(self, argv: List[str], env: Optional[Dict[str, str]], sudo: bool) -> List[str]:
        full = list(argv)
        if env:
            full = ['env', *[f'{k}={v}' for k, v in env.items()], *full]
        if sudo:
            full = ['sudo', *full]
        return full

    def run(
        self,
        machine: MachineSpec,
        argv: List[str],
        input: Optional[str] = None,
        check: bool = True,
        timeout: Optional[int] = None,
        env: Optional[Dict[str, str]] = None,
        sudo: bool = True
    ) -> CommandResult:
        """Run a command on a machine.

        Raises:
            CommandError: If ``check`` is set and the command exits non-zero
        """
        full = self._wrap(argv, env, sudo)
        logger.debug(f"[{machine.name}] $ {redact(shlex.join(full))}")
        result = self._execute(machine, full, input, timeout or self.settings.ssh.command_timeout)
        if check and not result.ok:
            raise CommandError(argv, result.returncode, result.stdout, result.stderr)
        return result

    def exists(self, machine: MachineSpec, path: str) -> bool:
        return self.run(machine, commands.path_exists(path), check=False).ok

    def read_file(self, machine: MachineSpec, path: str) -> str:
        return self.run(machine, commands.cat(path)).stdout

    def write_file(self, machine: MachineSpec, path: str, content: str,
                   mode: str = '0644', owner: Optional[str] = None) -> None:
        self.run(machine, commands.mkdir(os.path.dirname(path) or '/'))
        self.run(machine, commands.tee(path), input=content)
        self.run(machine, commands.chmod(mode, path))
        if owner:
            self.run(machine, commands.chown(owner, path))

    def interface_address(self, machine: MachineSpec, interface: str) -> str:
        """Read the IPv4 address configured on ``interface``.

        Raises:
            CommandError: If the interface cannot be queried
            LookupError: If the interface carries no IPv4 address
        """
        output = self.run(machine, commands.interface_addresses(interface), sudo=False).stdout
        match = INET_PATTERN.search(output)
        if not match:
            raise LookupError(f"No IPv4 address on {interface} for {machine.name}")
        return match.group(1)


def _local(argv: List[str], input: Optional[str] = None, timeout: Optional[int] = None,
           cwd: Optional[str] = None) -> CommandResult:
    try:
        result = subprocess.run(
            argv,
            input=input,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd
        )
        return CommandResult(result.returncode, result.stdout, result.stderr)
    except subprocess.TimeoutExpired:
        return CommandResult(255, '', f"Command timed out after {timeout} seconds")
    except FileNotFoundError as e:
        return CommandResult(127, '', str(e))


class MultipassBackend(MachineBackend):
    """Multipass VMs with a second, manually addressed adapter."""

    name = 'multipass'
    default_user = 'ubuntu'
    NETPLAN_PATH = '/etc/netplan/60-kubeboot.yaml'

    @staticmethod
    def mac_for(address: str) -> str:
        """Deterministic locally administered MAC derived from the address."""
        octets = [int(o) for o in address.split('.')]
        return '52:54:00:{:02x}:{:02x}:{:02x}'.format(*octets[1:])

    def _info(self, name: str) -> Optional[dict]:
        result = _local(['multipass', 'info', name, '--format', 'json'], timeout=60)
        if not result.ok:
            return None
        return json.loads(result.stdout)['info'][name]

    def launch(self, machine: MachineSpec) -> bool:
        info = self._info(machine.name)
        if info is not None:
            logger.info(f"✅ Multipass VM {machine.name} already exists ({info.get('state', 'unknown')})")
            if info.get('state') != 'Running':
                self._check(_local(['multipass', 'start', machine.name], timeout=300), 'multipass start')
            return False

        mac = self.mac_for(machine.address)
        logger.info(f"🚀 Launching Multipass VM {machine.name} ({machine.cpus} CPU, {machine.memory}M)")
        self._check(_local([
            'multipass', 'launch', self.settings.image,
            '--name', machine.name,
            '--cpus', str(machine.cpus),
            '--memory', f'{machine.memory}M',
            '--disk', '20G',
            '--network', f'name={self.settings.bridge},mode=manual,mac={mac}'
        ], timeout=900), 'multipass launch')

        netplan = {
            'network': {
                'version': 2,
                'ethernets': {
                    self.settings.interface: {
                        'match': {'macaddress': mac},
                        'set-name': self.settings.interface,
                        'addresses': [f'{machine.address}/24'],
                    }
                }
            }
        }
        self.write_file(machine, self.NETPLAN_PATH, yaml.safe_dump(netplan, sort_keys=False), mode='0600')
        self.run(machine, ['netplan', 'apply'])
        logger.info(f"✅ Launched {machine.name} at {machine.address}")
        return True

    @staticmethod
    def _check(result: CommandResult, what: str) -> None:
        if not result.ok:
            raise CommandError([what], result.returncode, result.stdout, result.stderr)

    def _execute(self, machine, argv, input, timeout):
        return _local(['multipass', 'exec', machine.name, '--', *argv], input=input, timeout=timeout)


VAGRANTFILE = """\
# Generated by kubeboot. Machine definitions live in machines.yaml.
require "yaml"

machines = YAML.load_file(File.join(__dir__, "machines.yaml"))

Vagrant.configure("2") do |config|
  machines.each do |m|
    config.vm.define m["name"] do |node|
      node.vm.box = m["box"]
      node.vm.box_version = m["box_version"] if m["box_version"]
      node.vm.hostname = m["name"]
      node.vm.network "private_network", ip: m["address"]
      node.vm.provider "virtualbox" do |vb|
        vb.name = m["name"]
        vb.memory = m["memory"]
        vb.cpus = m["cpus"]
        vb.customize ["modifyvm", :id, "--groups", m["group"]]
      end
    end
  end
end
"""


class VagrantBackend(MachineBackend):
    """Vagrant machines rendered from a declarative machine list."""

    name = 'vagrant'
    default_user = 'vagrant'

    @property
    def workdir(self) -> Path:
        return Path(self.settings.workdir).expanduser().absolute()

    def prepare(self, plan: BootstrapPlan) -> None:
        self.workdir.mkdir(parents=True, exist_ok=True)
        machines = [
            {
                'name': m.name,
                'role': m.role.value,
                'box': m.box,
                'box_version': m.box_version,
                'address': m.address,
                'memory': m.memory,
                'cpus': m.cpus,
                'group': m.group,
            }
            for m in plan.machines
        ]
        with open(self.workdir / 'machines.yaml', 'w') as f:
            yaml.safe_dump(machines, f, default_flow_style=False, sort_keys=False)
        vagrantfile = self.workdir / 'Vagrantfile'
        if not vagrantfile.exists():
            vagrantfile.write_text(VAGRANTFILE)
        logger.info(f"📄 Machine definitions written to {self.workdir / 'machines.yaml'}")

    def _state(self, name: str) -> Optional[str]:
        result = _local(['vagrant', 'status', name, '--machine-readable'], timeout=120, cwd=str(self.workdir))
        if not result.ok:
            return None
        for line in result.stdout.splitlines():
            parts = line.split(',')
            if len(parts) >= 4 and parts[2] == 'state':
                return parts[3]
        return None

    def launch(self, machine: MachineSpec) -> bool:
        if self._state(machine.name) == 'running':
            logger.info(f"✅ Vagrant machine {machine.name} already running")
            return False
        logger.info(f"🚀 vagrant up {machine.name}")
        result = _local(['vagrant', 'up', machine.name], timeout=1800, cwd=str(self.workdir))
        if not result.ok:
            raise CommandError(['vagrant', 'up', machine.name], result.returncode, result.stdout, result.stderr)
        return True

    def _execute(self, machine, argv, input, timeout):
        return _local(
            ['vagrant', 'ssh', machine.name, '-c', shlex.join(argv)],
            input=input,
            timeout=timeout,
            cwd=str(self.workdir)
        )


class SSHBackend(MachineBackend):
    """Pre-existing machines reached over SSH at their planned address."""

    name = 'ssh'
    default_user = 'ubuntu'

    def __init__(self, settings: ClusterSettings):
        super().__init__(settings)
        self._clients: Dict[str, paramiko.SSHClient] = {}
        self._lock = threading.Lock()

    def _client(self, machine: MachineSpec) -> paramiko.SSHClient:
        with self._lock:
            client = self._clients.get(machine.name)
            if client is None:
                client = paramiko.SSHClient()
                client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
                client.connect(
                    hostname=machine.address,
                    port=self.settings.ssh.port,
                    username=self.user,
                    key_filename=self.settings.ssh.private_key_path,
                    timeout=self.settings.ssh.connect_timeout
                )
                self._clients[machine.name] = client
            return client

    def launch(self, machine: MachineSpec) -> bool:
        logger.info(f"🔍 Testing SSH connection to {self.user}@{machine.address}")
        try:
            self._client(machine)
        except (paramiko.SSHException, OSError) as e:
            raise CommandError(['ssh', machine.address], 255, '', str(e)) from e
        self.run(machine, ['true'], sudo=False)
        return False

    def _execute(self, machine, argv, input, timeout):
        try:
            client = self._client(machine)
            stdin, stdout, stderr = client.exec_command(shlex.join(argv), timeout=timeout)
            if input is not None:
                stdin.write(input)
                stdin.flush()
                stdin.channel.shutdown_write()
            out = stdout.read().decode()
            err = stderr.read().decode()
            rc = stdout.channel.recv_exit_status()
        except socket.timeout:
            self._drop(machine)
            return CommandResult(255, '', f"Command timed out after {timeout} seconds")
        except (paramiko.SSHException, OSError) as e:
            self._drop(machine)
            return CommandResult(255, '', f"SSH session to {machine.address} failed: {e}")
        return CommandResult(rc, out, err)

    def _drop(self, machine: MachineSpec) -> None:
        """Forget a broken connection so the next command reconnects."""
        with self._lock:
            client = self._clients.pop(machine.name, None)
        if client is not None:
            client.close()

    def close(self) -> None:
        with self._lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()


FAKE_KUBECONFIG = """\
apiVersion: v1
kind: Config
clusters:
- cluster:
    certificate-authority-data: ZHJ5LXJ1bg==
    server: https://{address}:6443
  name: kubernetes
contexts:
- context:
    cluster: kubernetes
    user: kubernetes-admin
  name: kubernetes-admin@kubernetes
current-context: kubernetes-admin@kubernetes
users:
- name: kubernetes-admin
  user:
    client-certificate-data: ZHJ5LXJ1bg==
    client-key-data: ZHJ5LXJ1bg==
"""


def unwrap(argv: List[str]) -> Tuple[List[str], Dict[str, str]]:
    """Strip the ``sudo`` and ``env K=V`` prefixes added by MachineBackend.run."""
    args = list(argv)
    env: Dict[str, str] = {}
    if args and args[0] == 'sudo':
        args = args[1:]
    if args and args[0] == 'env':
        args = args[1:]
        while args and '=' in args[0] and not args[0].startswith('-'):
            key, value = args.pop(0).split('=', 1)
            env[key] = value
    return args, env


class DryRunBackend(MachineBackend):
    """Records commands instead of running them.

    Files written through the backend are kept in memory per machine, and the
    handful of tools whose output later steps depend on (``ip``, ``kubeadm``,
    ``kubectl version``, ``scp``) answer with plausible canned output, so a
    whole bootstrap can be walked through without touching a hypervisor.
    """

    name = 'dry-run'
    default_user = 'vagrant'

    def __init__(self, settings: ClusterSettings):
        super().__init__(settings)
        self.history: List[Tuple[str, List[str]]] = []
        self.files: Dict[Tuple[str, str], str] = {}
        self.machines: Dict[str, MachineSpec] = {}
        self.launched: List[str] = []
        self._lock = threading.RLock()

    def prepare(self, plan: BootstrapPlan) -> None:
        for machine in plan.machines:
            self.machines[machine.name] = machine

    def launch(self, machine: MachineSpec) -> bool:
        with self._lock:
            self.machines[machine.name] = machine
            if machine.name in self.launched:
                return False
            self.launched.append(machine.name)
            return True

    def commands_for(self, name: str) -> List[List[str]]:
        return [argv for machine, argv in self.history if machine == name]

    def _by_address(self, address: str) -> Optional[MachineSpec]:
        return next((m for m in self.machines.values() if m.address == address), None)

    def _execute(self, machine, argv, input, timeout):
        args, _env = unwrap(argv)
        with self._lock:
            self.history.append((machine.name, args))
            return self._respond(machine, args, input)

    def _respond(self, machine: MachineSpec, args: List[str], input: Optional[str]) -> CommandResult:
        tool = args[0] if args else ''
        if tool == 'test':
            return CommandResult(0 if (machine.name, args[-1]) in self.files else 1)
        if tool == 'cat':
            content = self.files.get((machine.name, args[-1]))
            if content is None:
                return CommandResult(1, '', f"cat: {args[-1]}: No such file or directory")
            return CommandResult(0, content)
        if tool == 'tee':
            self.files[(machine.name, args[-1])] = input or ''
            return CommandResult(0, input or '')
        if tool == 'ip' and 'addr' in args:
            interface = args[-1]
            return CommandResult(0, f"3: {interface}    inet {machine.address}/24 brd 0.0.0.0 scope global {interface}\n")
        if tool == 'kubeadm' and args[1:2] == ['init']:
            self.files[(machine.name, commands.ADMIN_KUBECONFIG)] = FAKE_KUBECONFIG.format(address=machine.address)
            return CommandResult(0, 'Your Kubernetes control-plane has initialized successfully!\n')
        if tool == 'kubeadm' and args[1:3] == ['token', 'create']:
            return CommandResult(0, (
                f"kubeadm join {machine.address}:6443 --token abcdef.0123456789abcdef "
                f"--discovery-token-ca-cert-hash sha256:{'0' * 64}\n"
            ))
        if tool == 'kubectl' and 'version' in args:
            return CommandResult(0, 'Client Version: v1.29.0\nServer Version: v1.29.0\n')
        if tool == 'install' and '-d' not in args:
            content = self.files.get((machine.name, args[-2]))
            if content is not None:
                self.files[(machine.name, args[-1])] = content
            return CommandResult(0)
        if tool == 'scp':
            remote, local = args[-2], args[-1]
            host, remote_path = remote.split('@', 1)[1].split(':', 1)
            source = self._by_address(host)
            content = self.files.get((source.name, remote_path)) if source else None
            if content is None:
                return CommandResult(1, '', f"scp: {remote_path}: No such file or directory")
            self.files[(machine.name, local)] = content
            return CommandResult(0)
        if tool == 'sh':
            script = self.files.get((machine.name, args[-1]), '')
            if 'kubeadm join' in script:
                self.files[(machine.name, commands.KUBELET_KUBECONFIG)] = 'kubelet'
            return CommandResult(0)
        return CommandResult(0)


BACKENDS = {
    'multipass': MultipassBackend,
    'vagrant': VagrantBackend,
    'ssh': SSHBackend,
}


def get_backend(settings: ClusterSettings, dry_run: bool = False) -> MachineBackend:
    """Instantiate the backend named in the settings."""
    if dry_run:
        return DryRunBackend(settings)
    return BACKENDS[settings.backend](settings)
