from types import SimpleNamespace

import pytest
from kubernetes.client.rest import ApiException

from kubeboot import registry
from kubeboot.log import redact
from kubeboot.modules import commands
from kubeboot.modules.backends import MultipassBackend, unwrap
from kubeboot.modules.kubeconfig import rename_kubeconfig
from kubeboot.modules.verify import node_status


def node(name, ready):
    condition = SimpleNamespace(type="Ready", status="True" if ready else "False")
    return SimpleNamespace(metadata=SimpleNamespace(name=name), status=SimpleNamespace(conditions=[condition]))


class FakeCoreApi:
    def __init__(self, nodes=None, error=None):
        self.nodes = nodes or []
        self.error = error

    def list_node(self):
        if self.error:
            raise self.error
        return SimpleNamespace(items=self.nodes)


def test_node_status_counts_ready_nodes():
    api = FakeCoreApi([node("lab-master", True), node("lab-node-1", True), node("lab-node-2", False)])
    result = node_status("unused", api=api)
    assert result["status"] == "ok"
    assert result["ready"] == 2
    assert result["total"] == 3
    assert result["nodes"]["lab-node-2"] is False


def test_node_status_api_error():
    error = ApiException(status=403, reason="Forbidden")
    error.body = "forbidden"
    assert node_status("unused", api=FakeCoreApi(error=error)) == {"status": "error", "details": "forbidden"}


def test_node_status_missing_kubeconfig(tmp_path):
    with pytest.raises(FileNotFoundError):
        node_status(str(tmp_path / "missing.conf"))


def test_redact_token_values():
    line = "kubeadm join 10.0.0.1:6443 --token abc.def --discovery-token-ca-cert-hash=sha256:123"
    masked = redact(line)
    assert "abc.def" not in masked
    assert "sha256:123" not in masked
    assert masked.startswith("kubeadm join 10.0.0.1:6443 --token ")


def test_unwrap_strips_sudo_and_env():
    args, env = unwrap(["sudo", "env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "update"])
    assert args == ["apt-get", "update"]
    assert env == {"DEBIAN_FRONTEND": "noninteractive"}


def test_multipass_mac_is_deterministic():
    assert MultipassBackend.mac_for("192.168.205.10") == "52:54:00:a8:cd:0a"
    assert MultipassBackend.mac_for("192.168.205.11") != MultipassBackend.mac_for("192.168.205.10")


def test_route_replace_adds_host_prefix():
    assert commands.route_replace("10.96.0.1", "192.168.205.10") == [
        "ip", "route", "replace", "10.96.0.1/32", "via", "192.168.205.10"
    ]


def test_rename_kubeconfig():
    data = {
        "clusters": [{"name": "kubernetes", "cluster": {"server": "https://10.0.2.15:6443"}}],
        "users": [{"name": "kubernetes-admin", "user": {}}],
        "contexts": [{"name": "kubernetes-admin@kubernetes", "context": {"cluster": "kubernetes", "user": "kubernetes-admin"}}],
        "current-context": "kubernetes-admin@kubernetes",
    }
    renamed = rename_kubeconfig(data, "lab", "https://192.168.205.10:6443")
    assert renamed["current-context"] == "lab"
    assert renamed["clusters"][0]["cluster"]["server"] == "https://192.168.205.10:6443"
    assert renamed["contexts"][0]["context"] == {"cluster": "lab", "user": "lab-admin"}


def test_registry_round_trip(tmp_path):
    path = str(tmp_path / "clusters.json")
    registry.register_cluster("lab", "/tmp/lab.conf", "192.168.205.10", "weave", 2, path=path)
    assert registry.load_registry(path)["lab"]["network_plugin"] == "weave"
    with pytest.raises(KeyError):
        registry.kubeconfig_env(["lab", "other"], path=path)
