"""
Infrastructure package for Casebook.

Centralizes database connectivity (connection factory, pooling), the
PostgreSQL schema and the retry policy for transient storage failures.
Keep this layer focused on I/O and resource management, decoupled from
the record/field semantics.
"""

from casebook.infrastructure.db_factory import (
    build_dsn,
    get_sync_connection,
    get_sync_pool,
)
from casebook.infrastructure.retry import RetryPolicy
from casebook.infrastructure.schema import bootstrap_schema, truncate_all

__all__ = [
    "RetryPolicy",
    "bootstrap_schema",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
    "truncate_all",
]
