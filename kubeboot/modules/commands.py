"""Argument-vector builders for the external tools kubeboot drives.

Every remote action is expressed as a list of arguments, never as shell
text, so configuration values are passed to the tool verbatim.
"""
from typing import Dict, List, Optional

ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"
KUBELET_KUBECONFIG = "/etc/kubernetes/kubelet.conf"

SSH_RELAXED_OPTIONS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "LogLevel=ERROR",
]


# kubeadm

def kubeadm_init(advertise_address: str, pod_network_cidr: Optional[str] = None) -> List[str]:
    argv = ["kubeadm", "init", f"--apiserver-advertise-address={advertise_address}"]
    if pod_network_cidr:
        argv.append(f"--pod-network-cidr={pod_network_cidr}")
    return argv


def kubeadm_print_join(ttl: str = "24h") -> List[str]:
    return ["kubeadm", "token", "create", "--print-join-command", f"--ttl={ttl}"]


# kubectl

def kubectl_apply(manifest: str, kubeconfig: str = ADMIN_KUBECONFIG, server_side: bool = False) -> List[str]:
    mode = ["--server-side"] if server_side else []
    return ["kubectl", f"--kubeconfig={kubeconfig}", "apply", *mode, "-f", manifest]


def kubectl_version(kubeconfig: str = ADMIN_KUBECONFIG) -> List[str]:
    return ["kubectl", f"--kubeconfig={kubeconfig}", "version"]


# files and users

def install_file(source: str, dest: str, owner: str, mode: str = "0600") -> List[str]:
    return ["install", "-D", "-o", owner, "-g", owner, "-m", mode, source, dest]


def mkdir(path: str, owner: Optional[str] = None, mode: str = "0755") -> List[str]:
    argv = ["install", "-d", "-m", mode]
    if owner:
        argv += ["-o", owner, "-g", owner]
    return argv + [path]


def tee(path: str) -> List[str]:
    return ["tee", path]


def chmod(mode: str, path: str) -> List[str]:
    return ["chmod", mode, path]


def chown(owner: str, path: str) -> List[str]:
    return ["chown", f"{owner}:{owner}", path]


def cat(path: str) -> List[str]:
    return ["cat", path]


def path_exists(path: str) -> List[str]:
    return ["test", "-e", path]


def home_dir(user: str) -> str:
    return "/root" if user == "root" else f"/home/{user}"


# networking

def interface_addresses(interface: str) -> List[str]:
    return ["ip", "-4", "-o", "addr", "show", "dev", interface]


def route_replace(destination: str, gateway: str) -> List[str]:
    if "/" not in destination:
        destination = f"{destination}/32"
    return ["ip", "route", "replace", destination, "via", gateway]


def scp_fetch(key_path: str, user: str, host: str, remote_path: str, local_path: str) -> List[str]:
    return ["scp", "-i", key_path, *SSH_RELAXED_OPTIONS, f"{user}@{host}:{remote_path}", local_path]


# host preparation

def modprobe(module: str) -> List[str]:
    return ["modprobe", module]


def sysctl_reload() -> List[str]:
    return ["sysctl", "--system"]


def swapoff() -> List[str]:
    return ["swapoff", "-a"]


def disable_swap_in_fstab() -> List[str]:
    return ["sed", "-i", r"/\sswap\s/ s/^#*/#/", "/etc/fstab"]


def systemctl_enable(*units: str) -> List[str]:
    return ["systemctl", "enable", "--now", *units]


def systemctl_restart(unit: str) -> List[str]:
    return ["systemctl", "restart", unit]


def run_script(path: str) -> List[str]:
    return ["sh", path]


class PackageManager:
    """Builds install commands for one OS package family."""

    RUNTIME_PACKAGES = ["containerd"]
    AGENT_PACKAGES = ["kubelet", "kubeadm", "kubectl"]

    def __init__(self, family: str, kubernetes_version: str):
        if family not in ("apt", "yum"):
            raise ValueError(f"Unsupported package manager: {family}")
        self.family = family
        self.version = kubernetes_version

    @property
    def repo_base(self) -> str:
        kind = "deb" if self.family == "apt" else "rpm"
        return f"https://pkgs.k8s.io/core:/stable:/v{self.version}/{kind}/"

    @property
    def repo_file(self) -> str:
        if self.family == "apt":
            return "/etc/apt/sources.list.d/kubernetes.list"
        return "/etc/yum.repos.d/kubernetes.repo"

    @property
    def keyring(self) -> str:
        return "/etc/apt/keyrings/kubernetes-apt-keyring.asc"

    @property
    def kubelet_defaults(self) -> str:
        return "/etc/default/kubelet" if self.family == "apt" else "/etc/sysconfig/kubelet"

    def repo_definition(self) -> str:
        if self.family == "apt":
            return f"deb [signed-by={self.keyring}] {self.repo_base} /\n"
        return "\n".join([
            "[kubernetes]",
            "name=Kubernetes",
            f"baseurl={self.repo_base}",
            "enabled=1",
            "gpgcheck=1",
            f"gpgkey={self.repo_base}repodata/repomd.xml.key",
            "",
        ])

    def fetch_key(self) -> Optional[List[str]]:
        if self.family != "apt":
            return None
        return ["curl", "-fsSL", "-o", self.keyring, f"{self.repo_base}Release.key"]

    def refresh(self) -> List[str]:
        if self.family == "apt":
            return ["apt-get", "update", "-q"]
        return ["yum", "makecache", "-q"]

    def install(self, packages: List[str]) -> List[str]:
        if self.family == "apt":
            return ["apt-get", "install", "-y", "-q", *packages]
        return ["yum", "install", "-y", "-q", *packages]

    def prerequisites(self) -> List[str]:
        if self.family == "apt":
            return self.install(["apt-transport-https", "ca-certificates", "curl", "gpg"])
        return self.install(["yum-utils", "curl"])

    def environment(self) -> Dict[str, str]:
        if self.family == "apt":
            return {"DEBIAN_FRONTEND": "noninteractive"}
        return {}
