from . import cluster, clusters, plugin

__all__ = ['cluster', 'clusters', 'plugin']
