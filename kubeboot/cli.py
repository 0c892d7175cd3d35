import logging
import sys

import typer

from kubeboot.commands import cluster, clusters, plugin
from kubeboot.log import setup_logging

# Create a callback for global options
app = typer.Typer(help="Bootstrap a kubeadm cluster from bare virtual machines.")

# Global debug flag
debug_mode = False

# Add all command groups
app.add_typer(cluster.app, name="cluster", help="Plan, bring up and inspect a cluster")
app.add_typer(clusters.app, name="clusters", help="Clusters bootstrapped on this host")
app.add_typer(plugin.app, name="plugins", help="Network plugin catalog")


# Global options callback
@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """kubeboot - cluster bootstrap CLI."""
    global debug_mode
    debug_mode = debug
    setup_logging(debug)
    if debug:
        logging.getLogger("kubeboot").debug("Debug mode enabled")


def run():
    try:
        app()
    except Exception as e:
        if debug_mode:
            import traceback
            logging.getLogger("kubeboot").error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.getLogger("kubeboot").error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
