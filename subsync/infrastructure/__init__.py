"""
Infrastructure package for subsync.

Centralizes remote database connectivity (async pool lifecycle, retries).
Keep this layer focused on I/O and resource management, decoupled from
reconciliation and coordinator logic.
"""

from subsync.infrastructure.db_factory import PoolManager, build_dsn

__all__ = [
    "PoolManager",
    "build_dsn",
]
