"""
Database connection factory utilities for Casebook.

Provides centralized management of PostgreSQL connections and the shared
connection pool. The PoolManager singleton ensures resources are properly
cleaned up on application exit.

Every connection is opened with a server-side statement timeout so no storage
call can block indefinitely; a timeout surfaces as a psycopg
OperationalError (QueryCanceled), which the backend reports as TransientError.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import atexit
import threading
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from casebook.config import Settings, get_settings
from casebook.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def connection_kwargs(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Keyword arguments applied to every connection: connect timeout and a
    session-wide statement timeout.
    """
    settings = settings or get_settings()
    return {
        "connect_timeout": settings.db_connect_timeout_seconds,
        "options": f"-c statement_timeout={int(settings.db_statement_timeout_ms)}",
    }


class PoolManager:
    """
    Thread-safe singleton for managing the database connection pool.

    Handles lifecycle management with automatic cleanup via atexit hook.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._sync_pool: Optional[ConnectionPool] = None
                # Register cleanup on exit
                atexit.register(cls._instance.close_all)
            return cls._instance

    def get_sync_pool(self, settings: Optional[Settings] = None) -> ConnectionPool:
        """
        Get or create the synchronous connection pool.

        Parameters
        ----------
        settings : Settings, optional
            Connection and pool sizing settings. Defaults to `get_settings()`.

        Returns
        -------
        ConnectionPool
            The managed sync pool instance.
        """
        with self._lock:
            if self._sync_pool is None:
                settings = settings or get_settings()
                self._sync_pool = ConnectionPool(
                    conninfo=build_dsn(settings),
                    min_size=settings.db_pool_min_size,
                    max_size=settings.db_pool_max_size,
                    kwargs=connection_kwargs(settings),
                    timeout=settings.db_connect_timeout_seconds,
                    open=True,
                )
                log.info(
                    "Connection pool opened",
                    extra={
                        "db_host": settings.db_host,
                        "db_name": settings.db_name,
                        "pool_max_size": settings.db_pool_max_size,
                    },
                )
            return self._sync_pool

    @contextmanager
    def sync_connection(self) -> Generator[Connection, None, None]:
        """
        Context manager for obtaining a sync connection from the pool.

        Example
        -------
            manager = PoolManager()
            with manager.sync_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
        """
        pool = self.get_sync_pool()
        with pool.connection() as conn:
            yield conn

    def close_all(self) -> None:
        """
        Close the managed pool and release resources.

        This is called automatically on exit via atexit hook.
        """
        with self._lock:
            if self._sync_pool is not None:
                try:
                    self._sync_pool.close()
                except Exception:
                    log.warning("Failed to close connection pool", exc_info=True)
                finally:
                    self._sync_pool = None


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.
    Use this for one-off operations such as schema bootstrap. Prefer the pool for
    repeated use.

    Returns
    -------
    Connection
        A new psycopg connection instance.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or build_dsn(), **connection_kwargs())


def get_sync_pool(settings: Optional[Settings] = None) -> ConnectionPool:
    """
    Get or create the synchronous connection pool via PoolManager.
    """
    manager = PoolManager()
    return manager.get_sync_pool(settings)


__all__ = [
    "PoolManager",
    "build_dsn",
    "connection_kwargs",
    "get_sync_connection",
    "get_sync_pool",
]
