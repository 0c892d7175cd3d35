import typer

from kubeboot.errors import UnknownPlugin
from kubeboot.modules import plugins

app = typer.Typer()


@app.command("list")
def plugin_list():
    """List the supported network plugins."""
    for identifier in plugins.available():
        plugin = plugins.resolve(identifier)
        default = " (default)" if identifier == plugins.DEFAULT_PLUGIN else ""
        typer.echo(f"{identifier:<8} cidr={plugin.cidr or '-':<16} manifests={len(plugin.manifests)}{default}")


@app.command("show")
def plugin_show(name: str = typer.Argument(..., help="Plugin name")):
    """Show what a network plugin needs on the coordinator and on workers."""
    try:
        plugin = plugins.resolve(plugins.select_identifier(name))
    except UnknownPlugin as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=2)
    coordinator = plugin.coordinator_requirements()
    typer.echo(f"🔌 {plugin.identifier}")
    typer.echo(f"  pod CIDR:        {coordinator['cidr'] or 'none'}")
    typer.echo(f"  manifests:       {', '.join(coordinator['manifests'])}")
    typer.echo(f"  host adapter:    {'patched into manifest' if coordinator['host_workaround'] else 'not needed'}")
    typer.echo(f"  node route:      {'yes' if plugin.worker_requirements()['static_route'] else 'no'}")
