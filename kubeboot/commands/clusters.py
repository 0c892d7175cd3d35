from typing import List

import typer

from kubeboot import registry

app = typer.Typer()


@app.command("list")
def list_clusters():
    """List all bootstrapped clusters."""
    clusters = registry.load_registry()
    if not clusters:
        typer.echo("No clusters registered.")
        return
    for name, info in clusters.items():
        typer.echo(f"{name}: {info['kubeconfig']} ({info['network_plugin']}, {info['workers']} workers)")


@app.command("use")
def use_clusters(names: List[str] = typer.Argument(..., help="Cluster names, first one is the default context")):
    """Print the KUBECONFIG export selecting one or more clusters."""
    try:
        value = registry.kubeconfig_env(names)
    except KeyError as e:
        typer.echo(f"❌ {e.args[0]}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"export KUBECONFIG={value}")
