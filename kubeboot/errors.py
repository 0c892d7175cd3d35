"""Exception hierarchy for the kubeboot package."""
from typing import List, Optional


class KubebootError(Exception):
    """Base class for all kubeboot errors."""


class ConfigError(KubebootError):
    """Invalid configuration detected before any machine work begins."""


class UnknownPlugin(ConfigError):
    """Requested network plugin is not in the catalog."""

    def __init__(self, identifier: str, known: Optional[List[str]] = None):
        self.identifier = identifier
        self.known = known or []
        message = f"Unknown network plugin '{identifier}'"
        if self.known:
            message += f" (expected one of: {', '.join(self.known)})"
        super().__init__(message)


class MalformedAddress(ConfigError):
    """Address is not a valid dotted-quad IPv4 string."""


class AddressRangeExhausted(ConfigError):
    """Address allocation ran past the end of the IPv4 space or the worker limit."""


class CommandError(KubebootError):
    """An external command exited non-zero."""

    def __init__(self, argv: List[str], returncode: int, stdout: str = "", stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout or "").strip()
        message = f"Command {self.argv[0] if self.argv else '?'} exited with status {returncode}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class MachineError(KubebootError):
    """Failure attributable to one machine and one bootstrap phase."""

    phase = "unknown"

    def __init__(self, machine: str, message: str, phase: Optional[str] = None):
        self.machine = machine
        if phase:
            self.phase = phase
        self.message = message
        super().__init__(f"[{machine}/{self.phase}] {message}")


class ProvisionError(MachineError):
    phase = "provision"


class InitError(MachineError):
    phase = "init"


class NetworkApplyError(MachineError):
    phase = "network"


class JoinError(MachineError):
    phase = "join"


class BarrierViolation(MachineError):
    """A worker tried to join before the coordinator finished initializing."""

    phase = "join"


class StateTransitionError(KubebootError):
    """Illegal machine state transition."""


class BootstrapAborted(KubebootError):
    """The run was aborted; carries the partial report."""

    def __init__(self, cause: Exception, report=None):
        self.cause = cause
        self.report = report
        super().__init__(f"Bootstrap aborted: {cause}")
