"""
Pytest configuration for Casebook.

Provides fixtures for:
- A deterministic clock and an in-memory Casebook for unit tests
- Database connection management and a clean PostgreSQL backend for
  integration tests
- Settings override for integration tests
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Generator

import psycopg
import pytest

from casebook.backends.memory import MemoryBackend
from casebook.backends.postgres import PostgresBackend
from casebook.components.field_registry import FieldCache
from casebook.config import Settings
from casebook.infrastructure.retry import RetryPolicy
from casebook.infrastructure.schema import bootstrap_schema, truncate_all
from casebook.service import Casebook

EPOCH = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class TickingClock:
    """
    Clock that moves forward by `step` on every reading, so consecutive
    timestamps are always strictly increasing.
    """

    def __init__(self, start: datetime = EPOCH, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        self.now = self.now + self.step
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def book(memory_backend: MemoryBackend, clock: TickingClock) -> Casebook:
    """
    Casebook over a fresh memory backend, without retry backoff.
    """
    return Casebook(
        memory_backend,
        retry=RetryPolicy.no_retry(),
        clock=clock,
        field_cache=FieldCache(),
    )


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        storage_backend="postgres",
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "casebook"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection with the schema bootstrapped.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        bootstrap_schema(conn)
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="function")
def pg_backend(
    db_connection: psycopg.Connection, test_dsn: str
) -> Generator[PostgresBackend, None, None]:
    """
    PostgreSQL backend over empty tables.

    Tables are truncated before and after each test for isolation.
    """
    truncate_all(db_connection)
    backend = PostgresBackend.from_dsn(test_dsn, min_size=1, max_size=4)
    try:
        yield backend
    finally:
        backend.close()
        truncate_all(db_connection)


@pytest.fixture(scope="function")
def pg_book(pg_backend: PostgresBackend) -> Casebook:
    return Casebook(pg_backend, retry=RetryPolicy.no_retry(), field_cache=FieldCache())
