import dataclasses

import pytest

from kubeboot.errors import StateTransitionError
from kubeboot.modules.models import (
    BootstrapReport,
    JoinCredential,
    MachineSpec,
    MachineState,
    MachineStatus,
    Role,
)

JOIN_SCRIPT = (
    "#!/bin/sh\n"
    "kubeadm join 192.168.205.10:6443 --token abcdef.0123456789abcdef "
    "--discovery-token-ca-cert-hash sha256:1234\n"
)


def coordinator():
    return MachineSpec("kubeboot-master", Role.COORDINATOR, "192.168.205.10", 2048, 2, "/kubeboot")


def worker():
    return MachineSpec("kubeboot-node-1", Role.WORKER, "192.168.205.11", 1024, 1, "/kubeboot")


def test_machine_spec_is_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        coordinator().address = "10.0.0.1"


def test_coordinator_lifecycle():
    status = MachineStatus(coordinator())
    status.advance(MachineState.PROVISIONED)
    status.advance(MachineState.INITIALIZED)
    status.advance(MachineState.DONE)
    assert status.state == MachineState.DONE


def test_worker_lifecycle():
    status = MachineStatus(worker())
    status.advance(MachineState.PROVISIONED)
    status.advance(MachineState.JOINED)
    status.advance(MachineState.DONE)
    assert status.state == MachineState.DONE


def test_worker_cannot_initialize():
    status = MachineStatus(worker())
    status.advance(MachineState.PROVISIONED)
    with pytest.raises(StateTransitionError):
        status.advance(MachineState.INITIALIZED)


def test_coordinator_cannot_join():
    status = MachineStatus(coordinator())
    status.advance(MachineState.PROVISIONED)
    with pytest.raises(StateTransitionError):
        status.advance(MachineState.JOINED)


def test_states_cannot_be_skipped():
    status = MachineStatus(worker())
    with pytest.raises(StateTransitionError):
        status.advance(MachineState.JOINED)
    with pytest.raises(StateTransitionError):
        status.advance(MachineState.DONE)


@pytest.mark.parametrize("steps", [
    [],
    [MachineState.PROVISIONED],
    [MachineState.PROVISIONED, MachineState.JOINED],
])
def test_failed_reachable_before_done(steps):
    status = MachineStatus(worker())
    for step in steps:
        status.advance(step)
    status.fail("join", "boom")
    assert status.state == MachineState.FAILED
    assert status.phase == "join"
    assert status.error == "boom"


def test_done_is_terminal():
    status = MachineStatus(worker())
    for step in (MachineState.PROVISIONED, MachineState.JOINED, MachineState.DONE):
        status.advance(step)
    with pytest.raises(StateTransitionError):
        status.fail("join", "late")


def test_join_credential_from_script():
    credential = JoinCredential.from_script(JOIN_SCRIPT, "/etc/kubeboot/join.sh")
    assert credential.endpoint == "192.168.205.10:6443"
    assert credential.token == "abcdef.0123456789abcdef"
    assert credential.ca_cert_hash == "sha256:1234"
    assert credential.path == "/etc/kubeboot/join.sh"


def test_join_credential_with_line_continuations():
    script = (
        "kubeadm join 192.168.205.10:6443 \\\n"
        "    --token abcdef.0123456789abcdef \\\n"
        "    --discovery-token-ca-cert-hash sha256:1234\n"
    )
    credential = JoinCredential.from_script(script, "/etc/kubeboot/join.sh")
    assert credential.token == "abcdef.0123456789abcdef"
    assert credential.ca_cert_hash == "sha256:1234"


@pytest.mark.parametrize("script", [
    "#!/bin/sh\necho hello\n",
    "kubeadm join --token abcdef.0123456789abcdef\n",
    "kubeadm join 192.168.205.10:6443\n",
])
def test_join_credential_rejects_incomplete_scripts(script):
    with pytest.raises(ValueError):
        JoinCredential.from_script(script, "/etc/kubeboot/join.sh")


def test_report_summary(plan):
    report = BootstrapReport.for_plan(plan)
    assert report.summary() == "0 of 2 workers joined."
    first = report.status(plan.workers[0].name)
    first.advance(MachineState.PROVISIONED)
    first.advance(MachineState.JOINED)
    assert report.summary() == "1 of 2 workers joined."
    report.status(plan.workers[1].name).fail("provision", "no vm")
    assert [s.machine.name for s in report.failed] == [plan.workers[1].name]
