import logging
from pathlib import Path
from typing import Optional, Tuple

import typer
import yaml

from kubeboot.config import ClusterSettings
from kubeboot.errors import BootstrapAborted, ConfigError
from kubeboot.log import setup_logging
from kubeboot.modules.backends import get_backend
from kubeboot.modules.driver import BootstrapDriver
from kubeboot.modules.models import BootstrapPlan
from kubeboot.modules.planner import build_plan

cluster_app = typer.Typer()

logger = logging.getLogger("kubeboot.cli")

EXIT_ABORTED = 1
EXIT_CONFIG = 2
EXIT_WORKERS_FAILED = 3


def load_plan(
    config: Optional[Path],
    network_plugin: Optional[str],
    workers: Optional[int] = None,
    backend: Optional[str] = None,
    parallel: Optional[int] = None
) -> Tuple[ClusterSettings, BootstrapPlan]:
    """Resolve settings and the plan; configuration errors end the command before any machine work."""
    overrides = {
        "network_plugin": network_plugin,
        "workers": workers,
        "backend": backend,
        "parallel": parallel,
    }
    try:
        settings = ClusterSettings.load(config, overrides=overrides)
        plan = build_plan(settings)
    except ConfigError as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG)
    return settings, plan


@cluster_app.command("up")
def up_cluster(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Cluster file (default: kubeboot.yaml)"),
    network_plugin: Optional[str] = typer.Option(
        None, "--network-plugin", "-n",
        help="calico, canal, flannel, weave or romana (env: KUBEBOOT_NETWORK_PLUGIN, default calico)"
    ),
    workers: Optional[int] = typer.Option(None, help="Number of worker machines"),
    backend: Optional[str] = typer.Option(None, help="Machine backend: multipass, vagrant or ssh"),
    parallel: Optional[int] = typer.Option(None, help="Workers bootstrapped at once after the coordinator is up"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log commands without touching any machine"),
):
    """Provision machines, initialize the coordinator and join the workers."""
    settings, plan = load_plan(config, network_plugin, workers, backend, parallel)
    setup_logging(
        log_file=settings.logging.file,
        max_size_mb=settings.logging.max_size_mb,
        backup_count=settings.logging.backup_count
    )

    machines = get_backend(settings, dry_run=dry_run)
    driver = BootstrapDriver(plan, machines, settings, export=not dry_run)
    try:
        report = driver.run()
    except BootstrapAborted as e:
        typer.echo(f"❌ {e}", err=True)
        if e.report is not None:
            typer.echo(e.report.summary(), err=True)
        raise typer.Exit(code=EXIT_ABORTED)
    finally:
        machines.close()

    typer.echo(report.summary())
    if report.kubeconfig:
        typer.echo(f"export KUBECONFIG={report.kubeconfig}")
    for warning in report.network_warnings:
        typer.echo(f"⚠️  {warning}")
    if report.failed:
        for status in report.failed:
            typer.echo(f"❌ {status.machine.name} ({status.phase}): {status.error}", err=True)
        raise typer.Exit(code=EXIT_WORKERS_FAILED)


@cluster_app.command("plan")
def plan_cluster(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Cluster file (default: kubeboot.yaml)"),
    network_plugin: Optional[str] = typer.Option(None, "--network-plugin", "-n", help="Network plugin"),
    workers: Optional[int] = typer.Option(None, help="Number of worker machines"),
    output: str = typer.Option("table", help="table or yaml"),
):
    """Show the machines and network plugin a run would use."""
    settings, plan = load_plan(config, network_plugin, workers)
    if output == "yaml":
        typer.echo(yaml.safe_dump({
            "cluster": plan.cluster_name,
            "network_plugin": {
                "name": plan.plugin.identifier,
                "coordinator": plan.plugin.coordinator_requirements(),
                "worker": plan.plugin.worker_requirements(),
            },
            "machines": [
                {
                    "name": m.name,
                    "role": m.role.value,
                    "address": m.address,
                    "memory": m.memory,
                    "cpus": m.cpus,
                    "group": m.group,
                }
                for m in plan.machines
            ],
        }, sort_keys=False))
        return

    typer.echo(f"Cluster: {plan.cluster_name}  backend: {settings.backend}")
    cidr = plan.plugin.cidr or "none"
    typer.echo(f"Network plugin: {plan.plugin.identifier}  (pod CIDR: {cidr})")
    for m in plan.machines:
        typer.echo(f"  {m.name:<24} {m.role.value:<12} {m.address:<16} {m.memory}M/{m.cpus}cpu  {m.group}")


@cluster_app.command("status")
def status_cluster(name: str = typer.Option(..., help="Registered cluster name")):
    """Show node readiness for a bootstrapped cluster."""
    from kubeboot import registry
    from kubeboot.modules.verify import node_status

    clusters = registry.load_registry()
    if name not in clusters:
        typer.echo(f"❌ Cluster '{name}' not found.")
        raise typer.Exit(code=1)
    result = node_status(clusters[name]["kubeconfig"])
    if result["status"] != "ok":
        typer.echo(f"❌ {result['details']}")
        raise typer.Exit(code=1)
    typer.echo(f"📡 {name}: {result['ready']} of {result['total']} nodes Ready")
    for node, ready in result["nodes"].items():
        typer.echo(f"  {'✅' if ready else '⏳'} {node}")


app = cluster_app
