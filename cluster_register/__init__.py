"""cluster-register: join a spoke cluster to an Open-Cluster-Management hub."""

__version__ = "0.1.0"
