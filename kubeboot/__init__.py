"""
kubeboot - bootstrap a kubeadm cluster from bare virtual machines.

One coordinator, N workers, one pod-network overlay from a fixed catalog.
"""

__version__ = "0.1.0"
