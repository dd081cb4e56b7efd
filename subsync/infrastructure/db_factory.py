"""
Database connection factory utilities for the remote store.

Provides lifecycle management of the async PostgreSQL connection pool used
by `PostgresRemoteStore`. The PoolManager is constructed explicitly by the
composition root and owned by the remote store; nothing here is global.

Pool opening is retried for transient connection failures using tenacity.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import psycopg
from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool, PoolTimeout
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from subsync.config import Settings, get_settings
from subsync.utils.logging import get_logger

log = get_logger(__name__)

TRANSIENT_ERRORS = (psycopg.OperationalError, psycopg.InterfaceError, PoolTimeout, OSError)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


class PoolManager:
    """
    Lazily opens and hands out a single AsyncConnectionPool.

    A failed open leaves the manager without a pool, so the next call tries
    again; the remote store treats that as "offline until next trigger".
    """

    def __init__(
        self,
        dsn: str,
        connect_timeout_s: int = 5,
        retry_attempts: int = 3,
        min_size: int = 1,
        max_size: int = 4,
    ) -> None:
        self._dsn = dsn
        self._connect_timeout_s = connect_timeout_s
        self._retry_attempts = max(1, retry_attempts)
        self._min_size = min_size
        self._max_size = max_size
        self._pool: Optional[AsyncConnectionPool] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PoolManager":
        return cls(
            dsn=build_dsn(settings),
            connect_timeout_s=settings.remote_connect_timeout_s,
            retry_attempts=settings.remote_retry_attempts,
        )

    async def _open_once(self) -> AsyncConnectionPool:
        pool = AsyncConnectionPool(
            conninfo=self._dsn,
            min_size=self._min_size,
            max_size=self._max_size,
            open=False,
            timeout=self._connect_timeout_s,
            kwargs={"connect_timeout": self._connect_timeout_s},
        )
        try:
            await pool.open(wait=True, timeout=self._connect_timeout_s)
        except BaseException:
            await pool.close()
            raise
        return pool

    async def get_pool(self, retry: bool = True) -> AsyncConnectionPool:
        """
        Get or open the pool.

        Parameters
        ----------
        retry : bool
            Retry with exponential backoff on transient errors. Availability
            checks pass False so an offline check fails fast.
        """
        async with self._lock:
            if self._pool is not None:
                return self._pool

            attempts = self._retry_attempts if retry else 1
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                reraise=True,
            ):
                with attempt:
                    self._pool = await self._open_once()

            log.info("[POOL] Remote pool opened", extra={"max_size": self._max_size})
            return self._pool

    @asynccontextmanager
    async def connection(self, retry: bool = True) -> AsyncIterator[AsyncConnection]:
        """
        Context manager for obtaining a connection from the pool.

        Example
        -------
            async with manager.connection() as conn:
                await conn.execute("SELECT 1")
        """
        pool = await self.get_pool(retry=retry)
        async with pool.connection() as conn:
            yield conn

    async def close(self) -> None:
        """Close the managed pool and release resources."""
        async with self._lock:
            if self._pool is not None:
                try:
                    await self._pool.close()
                finally:
                    self._pool = None


__all__ = ["PoolManager", "TRANSIENT_ERRORS", "build_dsn"]
