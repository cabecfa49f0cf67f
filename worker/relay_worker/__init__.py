"""Scheduled relay worker: queue transfer, indexing and health checks."""

__version__ = "0.1.0"
