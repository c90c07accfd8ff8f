"""replica_sync: keep N directory trees converged through a persistent archive."""

__version__ = "0.1.0"
