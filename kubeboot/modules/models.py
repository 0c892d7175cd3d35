"""Data models for kubeboot cluster bootstrap."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from kubeboot.errors import StateTransitionError


class Role(str, Enum):
    """Machine roles in the cluster."""
    COORDINATOR = 'coordinator'
    WORKER = 'worker'


class MachineState(str, Enum):
    """Lifecycle of one machine during a bootstrap run."""
    PLANNED = 'planned'
    PROVISIONED = 'provisioned'
    INITIALIZED = 'initialized'
    JOINED = 'joined'
    DONE = 'done'
    FAILED = 'failed'


_TRANSITIONS = {
    (MachineState.PLANNED, MachineState.PROVISIONED): None,
    (MachineState.PROVISIONED, MachineState.INITIALIZED): Role.COORDINATOR,
    (MachineState.PROVISIONED, MachineState.JOINED): Role.WORKER,
    (MachineState.INITIALIZED, MachineState.DONE): Role.COORDINATOR,
    (MachineState.JOINED, MachineState.DONE): Role.WORKER,
}


@dataclass(frozen=True)
class MachineSpec:
    """A single planned machine."""
    name: str
    role: Role
    address: str
    memory: int
    cpus: int
    group: str
    box: str = 'ubuntu/jammy64'
    box_version: Optional[str] = None

    @property
    def is_coordinator(self) -> bool:
        return self.role == Role.COORDINATOR


@dataclass(frozen=True)
class ManifestPatch:
    """Regex substitution that injects the host-only adapter into a manifest.

    ``replacement`` is a ``re.sub`` template; ``{interface}`` is filled in
    with the adapter name before the substitution runs.
    """
    pattern: str
    replacement: str

    def apply(self, text: str, interface: str) -> str:
        replacement = self.replacement.replace('{interface}', interface)
        patched, count = re.subn(self.pattern, replacement, text, flags=re.MULTILINE)
        if count == 0:
            raise ValueError(f"Manifest does not contain pattern {self.pattern!r}")
        return patched


@dataclass(frozen=True)
class ManifestRef:
    """One manifest an overlay needs, in apply order."""
    name: str
    url: Optional[str] = None
    dynamic: bool = False
    patch: Optional[ManifestPatch] = None
    server_side: bool = False


@dataclass(frozen=True)
class NetworkPlugin:
    """A pod-network overlay entry from the catalog."""
    identifier: str
    cidr: Optional[str]
    manifests: Tuple[ManifestRef, ...]
    host_workaround: bool = False
    node_route: bool = False

    def coordinator_requirements(self) -> Dict[str, object]:
        return {
            'cidr': self.cidr,
            'manifests': [m.name for m in self.manifests],
            'host_workaround': self.host_workaround,
            'static_route': self.node_route,
        }

    def worker_requirements(self) -> Dict[str, object]:
        return {'static_route': self.node_route}


@dataclass(frozen=True)
class JoinCredential:
    """Join script minted once by the coordinator."""
    token: str
    endpoint: str
    ca_cert_hash: Optional[str]
    script: str
    path: str

    @classmethod
    def from_script(cls, script: str, path: str) -> 'JoinCredential':
        """Parse a ``kubeadm join`` script into its parts."""
        joined = script.replace('\\\n', ' ')
        command = next(
            (line.strip() for line in joined.splitlines() if line.strip().startswith('kubeadm join')),
            None
        )
        if command is None:
            raise ValueError("Join script does not contain a 'kubeadm join' command")
        args = command.split()
        endpoint = args[2] if len(args) > 2 and not args[2].startswith('--') else ''
        token = _flag_value(args, '--token')
        if not endpoint or not token:
            raise ValueError(f"Join command is missing endpoint or token: {command}")
        return cls(
            token=token,
            endpoint=endpoint,
            ca_cert_hash=_flag_value(args, '--discovery-token-ca-cert-hash'),
            script=script,
            path=path,
        )


def _flag_value(args: List[str], flag: str) -> Optional[str]:
    for i, arg in enumerate(args):
        if arg == flag and i + 1 < len(args):
            return args[i + 1]
        if arg.startswith(flag + '='):
            return arg.split('=', 1)[1]
    return None


@dataclass(frozen=True)
class BootstrapPlan:
    """Ordered machine list plus the single active network plugin."""
    cluster_name: str
    machines: Tuple[MachineSpec, ...]
    plugin: NetworkPlugin

    @property
    def coordinator(self) -> MachineSpec:
        return next(m for m in self.machines if m.role == Role.COORDINATOR)

    @property
    def workers(self) -> List[MachineSpec]:
        return [m for m in self.machines if m.role == Role.WORKER]


@dataclass
class MachineStatus:
    """Tracks one machine through the bootstrap state machine."""
    machine: MachineSpec
    state: MachineState = MachineState.PLANNED
    phase: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def advance(self, new_state: MachineState) -> None:
        if new_state == MachineState.FAILED:
            if self.state == MachineState.DONE:
                raise StateTransitionError(f"{self.machine.name} is already done")
            self.state = new_state
            return
        key = (self.state, new_state)
        if key not in _TRANSITIONS:
            raise StateTransitionError(
                f"{self.machine.name}: cannot move from {self.state.value} to {new_state.value}"
            )
        required_role = _TRANSITIONS[key]
        if required_role is not None and self.machine.role != required_role:
            raise StateTransitionError(
                f"{self.machine.name}: {new_state.value} is only valid for {required_role.value} machines"
            )
        self.state = new_state

    def fail(self, phase: str, error: str) -> None:
        self.phase = phase
        self.error = error
        self.advance(MachineState.FAILED)


@dataclass
class BootstrapReport:
    """Outcome of a bootstrap run."""
    plan: BootstrapPlan
    statuses: Dict[str, MachineStatus] = field(default_factory=dict)
    credential: Optional[JoinCredential] = None
    kubeconfig: Optional[str] = None
    network_warnings: List[str] = field(default_factory=list)

    @classmethod
    def for_plan(cls, plan: BootstrapPlan) -> 'BootstrapReport':
        return cls(plan=plan, statuses={m.name: MachineStatus(machine=m) for m in plan.machines})

    def status(self, name: str) -> MachineStatus:
        return self.statuses[name]

    @property
    def failed(self) -> List[MachineStatus]:
        return [s for s in self.statuses.values() if s.state == MachineState.FAILED]

    @property
    def workers_joined(self) -> int:
        return sum(
            1 for s in self.statuses.values()
            if s.machine.role == Role.WORKER and s.state in (MachineState.JOINED, MachineState.DONE)
        )

    def summary(self) -> str:
        return f"{self.workers_joined} of {len(self.plan.workers)} workers joined."
