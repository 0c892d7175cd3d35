"""
Cluster bootstrap modules: planning, provisioning, initialization and joining.
"""
