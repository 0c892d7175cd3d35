import pytest

from conftest import FaultyBackend, is_tool
from kubeboot.config import SSHSettings
from kubeboot.errors import ProvisionError
from kubeboot.modules.provisioner import NodeProvisioner


def test_provision_installs_runtime_and_agent(backend, settings, plan):
    machine = plan.workers[0]
    assert NodeProvisioner(backend, settings).provision(machine) is True

    history = backend.commands_for(machine.name)
    assert ["swapoff", "-a"] in history
    assert ["modprobe", "br_netfilter"] in history
    assert ["apt-get", "install", "-y", "-q", "containerd", "kubelet", "kubeadm", "kubectl"] in history
    assert ["systemctl", "enable", "--now", "containerd", "kubelet"] in history
    assert backend.files[(machine.name, "/etc/default/kubelet")] == f"KUBELET_EXTRA_ARGS=--node-ip={machine.address}\n"
    assert "v1.29" in backend.files[(machine.name, "/etc/apt/sources.list.d/kubernetes.list")]


def test_provision_stages_trust_material(backend, settings, plan):
    machine = plan.coordinator
    NodeProvisioner(backend, settings).provision(machine)
    assert "test@kubeboot" in backend.files[(machine.name, "/home/vagrant/.ssh/id_rsa.pub")]
    assert "PRIVATE KEY" in backend.files[(machine.name, "/home/vagrant/.ssh/id_rsa")]
    assert ["chmod", "0600", "/home/vagrant/.ssh/id_rsa"] in backend.commands_for(machine.name)


def test_provision_is_idempotent(backend, settings, plan):
    machine = plan.workers[0]
    provisioner = NodeProvisioner(backend, settings)
    provisioner.provision(machine)
    first_run = len(backend.history)

    assert provisioner.provision(machine) is False
    rerun = [args for _, args in backend.history[first_run:]]
    assert not any(args[0] == "apt-get" for args in rerun)
    assert backend.launched.count(machine.name) == 1


def test_provision_with_yum(make_settings, plan):
    settings = make_settings(package_manager="yum", kubernetes_version="1.30")
    backend = FaultyBackend(settings)
    machine = plan.workers[0]
    NodeProvisioner(backend, settings).provision(machine)

    history = backend.commands_for(machine.name)
    assert ["yum", "install", "-y", "-q", "containerd", "kubelet", "kubeadm", "kubectl"] in history
    assert not any(args[0] == "curl" for args in history)
    assert "v1.30/rpm/" in backend.files[(machine.name, "/etc/yum.repos.d/kubernetes.repo")]
    assert (machine.name, "/etc/sysconfig/kubelet") in backend.files


def test_launch_failure(settings, plan):
    machine = plan.workers[0]
    backend = FaultyBackend(settings, fail_launch=[machine.name])
    with pytest.raises(ProvisionError) as excinfo:
        NodeProvisioner(backend, settings).provision(machine)
    assert excinfo.value.machine == machine.name
    assert excinfo.value.phase == "provision"


def test_install_failure(backend, settings, plan):
    machine = plan.workers[0]
    backend.fail(machine.name, is_tool("apt-get", "install"))
    with pytest.raises(ProvisionError):
        NodeProvisioner(backend, settings).provision(machine)
    assert (machine.name, "/var/lib/kubeboot/provisioned") not in backend.files


def test_missing_key_pair(make_settings, tmp_path, plan):
    settings = make_settings(ssh=SSHSettings(private_key_path=str(tmp_path / "absent")))
    with pytest.raises(ProvisionError):
        NodeProvisioner(FaultyBackend(settings), settings).provision(plan.workers[0])
