import pytest
import requests

from conftest import index_of, is_tool
from kubeboot.errors import InitError, NetworkApplyError
from kubeboot.modules import plugins
from kubeboot.modules.coordinator import CoordinatorInitializer

PUBLIC_KEY = "ssh-rsa AAAAB3NzaC1yc2E test@kubeboot"


@pytest.fixture
def coordinator(backend, plan):
    machine = plan.coordinator
    backend.prepare(plan)
    backend.files[(machine.name, "/home/vagrant/.ssh/id_rsa.pub")] = PUBLIC_KEY + "\n"
    return machine


def init_args(backend, machine):
    return next(args for args in backend.commands_for(machine.name) if args[:2] == ["kubeadm", "init"])


def applied(backend, machine):
    return [args[-1] for args in backend.commands_for(machine.name) if is_tool("kubectl")(args) and "apply" in args]


def test_calico_init_and_manifests(backend, settings, coordinator, fetch):
    initializer = CoordinatorInitializer(backend, settings, fetch=fetch)
    credential = initializer.initialize(coordinator, plugins.resolve("calico"))

    assert init_args(backend, coordinator) == [
        "kubeadm", "init",
        "--apiserver-advertise-address=192.168.205.10",
        "--pod-network-cidr=192.168.0.0/16",
    ]
    assert applied(backend, coordinator) == [m.url for m in plugins.resolve("calico").manifests]
    assert fetch.calls == []
    assert credential.endpoint == "192.168.205.10:6443"
    assert initializer.network_errors == []


def test_calico_operator_applied_server_side(backend, settings, coordinator, fetch):
    CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve("calico"))
    applies = [args for args in backend.commands_for(coordinator.name) if is_tool("kubectl")(args) and "apply" in args]
    operator, resources = applies
    assert "--server-side" in operator
    assert operator[-1].endswith("/tigera-operator.yaml")
    assert "--server-side" not in resources


@pytest.mark.parametrize("identifier", ["weave", "romana"])
def test_no_cidr_flag_without_plugin_cidr(backend, settings, coordinator, fetch, identifier):
    CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve(identifier))
    assert not any(arg.startswith("--pod-network-cidr") for arg in init_args(backend, coordinator))


def test_weave_manifest_from_cluster_version(backend, settings, coordinator, fetch):
    CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve("weave"))
    manifest, = applied(backend, coordinator)
    assert manifest.startswith(plugins.WEAVE_BASE + "?k8s-version=")
    history = backend.history
    version = index_of(history, coordinator.name, lambda a: is_tool("kubectl")(a) and "version" in a)
    apply = index_of(history, coordinator.name, lambda a: is_tool("kubectl")(a) and "apply" in a)
    assert 0 <= version < apply


def test_flannel_manifest_patched_for_interface(backend, settings, coordinator, fetch):
    CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve("flannel"))

    staged = "/var/lib/kubeboot/manifests/kube-flannel.yml"
    assert applied(backend, coordinator) == [staged]
    assert "- --iface=eth1" in backend.files[(coordinator.name, staged)]
    assert fetch.calls == [plugins.resolve("flannel").manifests[0].url]
    assert "--pod-network-cidr=10.244.0.0/16" in init_args(backend, coordinator)


def test_canal_manifest_patched_for_interface(backend, settings, coordinator, fetch):
    CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve("canal"))
    assert applied(backend, coordinator) == ["/var/lib/kubeboot/manifests/canal.yaml"]
    assert fetch.calls == [plugins.resolve("canal").manifests[0].url]
    assert 'canal_iface: "eth1"' in backend.files[(coordinator.name, "/var/lib/kubeboot/manifests/canal.yaml")]


def test_join_script_written(backend, settings, coordinator, fetch):
    credential = CoordinatorInitializer(backend, settings, fetch=fetch).initialize(
        coordinator, plugins.resolve("calico")
    )
    script = backend.files[(coordinator.name, "/etc/kubeboot/join.sh")]
    assert script.startswith("#!/bin/sh\nkubeadm join 192.168.205.10:6443")
    assert credential.script == script
    assert credential.token == "abcdef.0123456789abcdef"
    assert ["chmod", "0755", "/etc/kubeboot/join.sh"] in backend.commands_for(coordinator.name)
    assert ["kubeadm", "token", "create", "--print-join-command", "--ttl=24h"] in backend.commands_for(coordinator.name)


def test_credential_minted_after_init(backend, settings, coordinator, fetch):
    CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve("calico"))
    history = backend.history
    init = index_of(history, coordinator.name, is_tool("kubeadm", "init"))
    token = index_of(history, coordinator.name, is_tool("kubeadm", "token", "create"))
    assert 0 <= init < token


def test_admin_kubeconfig_installed_for_user(backend, settings, coordinator, fetch):
    CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve("calico"))
    assert (coordinator.name, "/home/vagrant/.kube/config") in backend.files


def test_trust_key_authorized_once(backend, settings, coordinator, fetch):
    initializer = CoordinatorInitializer(backend, settings, fetch=fetch)
    initializer.initialize(coordinator, plugins.resolve("calico"))
    initializer.initialize(coordinator, plugins.resolve("calico"))
    authorized = backend.files[(coordinator.name, "/home/vagrant/.ssh/authorized_keys")]
    assert authorized.splitlines().count(PUBLIC_KEY) == 1


def test_rerun_reuses_cluster_and_credential(backend, settings, coordinator, fetch):
    initializer = CoordinatorInitializer(backend, settings, fetch=fetch)
    first = initializer.initialize(coordinator, plugins.resolve("calico"))
    second = initializer.initialize(coordinator, plugins.resolve("calico"))

    history = backend.commands_for(coordinator.name)
    assert sum(1 for args in history if args[:2] == ["kubeadm", "init"]) == 1
    assert sum(1 for args in history if args[:3] == ["kubeadm", "token", "create"]) == 1
    assert first == second


def test_init_failure_is_fatal_and_mints_nothing(backend, settings, coordinator, fetch):
    backend.fail(coordinator.name, is_tool("kubeadm", "init"))
    with pytest.raises(InitError) as excinfo:
        CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve("calico"))

    assert excinfo.value.phase == "init"
    assert (coordinator.name, "/etc/kubeboot/join.sh") not in backend.files
    assert applied(backend, coordinator) == []


def test_unreadable_interface_stops_before_init(backend, settings, coordinator, fetch):
    backend.fail(coordinator.name, is_tool("ip", "-4"))
    with pytest.raises(InitError):
        CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve("calico"))
    assert not any(args[:2] == ["kubeadm", "init"] for args in backend.commands_for(coordinator.name))


def test_token_failure_is_fatal(backend, settings, coordinator, fetch):
    backend.fail(coordinator.name, is_tool("kubeadm", "token"))
    with pytest.raises(InitError):
        CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve("calico"))


def test_manifest_failure_still_issues_credential(backend, settings, coordinator, fetch):
    backend.fail(coordinator.name, lambda args: is_tool("kubectl")(args) and "apply" in args)
    initializer = CoordinatorInitializer(backend, settings, fetch=fetch)
    credential = initializer.initialize(coordinator, plugins.resolve("calico"))

    assert credential.token
    assert len(initializer.network_errors) == 2
    assert all(isinstance(e, NetworkApplyError) for e in initializer.network_errors)
    assert "calico/tigera-operator.yaml" in str(initializer.network_errors[0])


def test_manifest_download_failure_is_collected(backend, settings, coordinator):
    def unreachable(url, timeout=None):
        raise requests.ConnectionError("no route to host")

    initializer = CoordinatorInitializer(backend, settings, fetch=unreachable)
    credential = initializer.initialize(coordinator, plugins.resolve("flannel"))
    assert credential.endpoint == "192.168.205.10:6443"
    assert len(initializer.network_errors) == 1
    assert "no route to host" in str(initializer.network_errors[0])


def test_weave_route_on_coordinator_before_manifest(backend, settings, coordinator, fetch):
    CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve("weave"))
    history = backend.history
    route = index_of(
        history, coordinator.name, is_tool("ip", "route", "replace", "10.96.0.1/32", "via", "192.168.205.10")
    )
    apply = index_of(history, coordinator.name, lambda a: is_tool("kubectl")(a) and "apply" in a)
    assert 0 <= route < apply


@pytest.mark.parametrize("identifier", ["calico", "canal", "flannel", "romana"])
def test_no_coordinator_route_for_other_plugins(backend, settings, coordinator, fetch, identifier):
    CoordinatorInitializer(backend, settings, fetch=fetch).initialize(coordinator, plugins.resolve(identifier))
    assert index_of(backend.history, coordinator.name, is_tool("ip", "route")) == -1


def test_coordinator_route_failure_is_collected(backend, settings, coordinator, fetch):
    backend.fail(coordinator.name, is_tool("ip", "route"))
    initializer = CoordinatorInitializer(backend, settings, fetch=fetch)
    credential = initializer.initialize(coordinator, plugins.resolve("weave"))
    assert credential.token
    assert len(initializer.network_errors) == 1
    assert "10.96.0.1" in str(initializer.network_errors[0])
