"""Bootstrap driver: sequences provisioning, init and joins across the plan.

Per machine: planned -> provisioned -> (initialized | joined) -> done, with
failed reachable from any state. The coordinator is a barrier: no worker
join starts until the coordinator reached ``initialized``. A failed
coordinator aborts the run; a failed worker is recorded and the run goes on.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

import yaml

from kubeboot.config import ClusterSettings
from kubeboot.errors import (
    BarrierViolation,
    BootstrapAborted,
    CommandError,
    InitError,
    MachineError,
    ProvisionError,
)
from kubeboot import registry
from .backends import MachineBackend
from .coordinator import CoordinatorInitializer
from .joiner import WorkerJoiner
from .kubeconfig import export_kubeconfig
from .models import BootstrapPlan, BootstrapReport, JoinCredential, MachineSpec, MachineState
from .provisioner import NodeProvisioner

logger = logging.getLogger("kubeboot.driver")


class BootstrapDriver:
    """Runs one bootstrap of the cluster described by a plan."""

    def __init__(
        self,
        plan: BootstrapPlan,
        backend: MachineBackend,
        settings: ClusterSettings,
        provisioner: Optional[NodeProvisioner] = None,
        initializer: Optional[CoordinatorInitializer] = None,
        joiner: Optional[WorkerJoiner] = None,
        export: bool = True,
        registry_file: Optional[str] = None
    ):
        """Initialize the driver.

        Args:
            plan: The bootstrap plan; never modified
            backend: Backend used to reach the machines
            settings: Cluster settings
            provisioner: Node provisioner (defaults to one on ``backend``)
            initializer: Coordinator initializer (defaults to one on ``backend``)
            joiner: Worker joiner (defaults to one on ``backend``)
            export: Copy the admin kubeconfig to the host and register the cluster
            registry_file: Override for the cluster registry location
        """
        self.plan = plan
        self.backend = backend
        self.settings = settings
        self.provisioner = provisioner or NodeProvisioner(backend, settings)
        self.initializer = initializer or CoordinatorInitializer(backend, settings)
        self.joiner = joiner or WorkerJoiner(backend, settings)
        self.export = export
        self.registry_file = registry_file
        self.report = BootstrapReport.for_plan(plan)

    def run(self) -> BootstrapReport:
        """Bootstrap the cluster.

        Returns:
            BootstrapReport: Per-machine outcome; worker failures are recorded here

        Raises:
            BootstrapAborted: If the coordinator failed to provision or initialize
        """
        start_time = time.time()
        coordinator = self.plan.coordinator
        logger.info(
            f"🚀 Bootstrapping '{self.plan.cluster_name}' with {len(self.plan.workers)} worker(s) "
            f"on {self.backend.name}, network plugin {self.plan.plugin.identifier}"
        )
        self.backend.prepare(self.plan)

        try:
            self._provision(coordinator)
            credential = self._initialize(coordinator)
        except (ProvisionError, InitError) as e:
            logger.error(f"❌ Coordinator failed, aborting run: {e}")
            raise BootstrapAborted(e, self.report) from e

        self.report.credential = credential
        self._run_workers(credential)

        self.report.status(coordinator.name).advance(MachineState.DONE)
        if self.export:
            self._export(coordinator)

        logger.info(f"🏁 Bootstrap finished in {time.time() - start_time:.1f}s: {self.report.summary()}")
        for status in self.report.failed:
            logger.error(f"❌ {status.machine.name} failed during {status.phase}: {status.error}")
        for warning in self.report.network_warnings:
            logger.warning(f"⚠️  {warning}")
        return self.report

    def _provision(self, machine: MachineSpec) -> None:
        status = self.report.status(machine.name)
        try:
            self.provisioner.provision(machine)
        except ProvisionError as e:
            status.fail(e.phase, e.message)
            raise
        status.advance(MachineState.PROVISIONED)

    def _initialize(self, machine: MachineSpec) -> JoinCredential:
        status = self.report.status(machine.name)
        try:
            credential = self.initializer.initialize(machine, self.plan.plugin)
        except InitError as e:
            status.fail(e.phase, e.message)
            raise
        status.advance(MachineState.INITIALIZED)
        warnings = [str(e) for e in self.initializer.network_errors]
        status.warnings.extend(warnings)
        self.report.network_warnings.extend(warnings)
        return credential

    def _require_barrier(self, machine: MachineSpec) -> None:
        coordinator = self.report.status(self.plan.coordinator.name)
        if coordinator.state not in (MachineState.INITIALIZED, MachineState.DONE):
            raise BarrierViolation(
                machine.name,
                f"coordinator {coordinator.machine.name} is {coordinator.state.value}, not initialized"
            )

    def _run_workers(self, credential: JoinCredential) -> None:
        workers = self.plan.workers
        if not workers:
            return
        parallel = min(self.settings.parallel, len(workers))
        if parallel <= 1:
            for worker in workers:
                self._bootstrap_worker(worker, credential)
            return

        logger.info(f"⚡ Bootstrapping {len(workers)} workers with {parallel} parallel slots")
        with ThreadPoolExecutor(max_workers=parallel, thread_name_prefix="worker") as executor:
            futures = {executor.submit(self._bootstrap_worker, w, credential): w.name for w in workers}
            for future in as_completed(futures):
                future.result()

    def _bootstrap_worker(self, machine: MachineSpec, credential: JoinCredential) -> None:
        status = self.report.status(machine.name)
        try:
            self.provisioner.provision(machine)
            status.advance(MachineState.PROVISIONED)
            self._require_barrier(machine)
            self.joiner.join(machine, self.plan.coordinator.address, self.plan.plugin, credential)
            status.advance(MachineState.JOINED)
            status.advance(MachineState.DONE)
        except MachineError as e:
            status.fail(e.phase, e.message)
            logger.error(f"❌ {e}")

    def _export(self, coordinator: MachineSpec) -> None:
        try:
            path = export_kubeconfig(
                self.backend, coordinator, self.plan.cluster_name, self.settings.kubeconfig_dir
            )
            registry.register_cluster(
                self.plan.cluster_name,
                path,
                coordinator=coordinator.address,
                plugin=self.plan.plugin.identifier,
                workers=self.report.workers_joined,
                path=self.registry_file
            )
        except (CommandError, OSError, yaml.YAMLError) as e:
            logger.warning(f"⚠️  Could not export kubeconfig: {e}")
            return
        self.report.kubeconfig = str(path)
