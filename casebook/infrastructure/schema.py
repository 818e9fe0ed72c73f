"""
PostgreSQL schema for Casebook: owners, custom_fields, records and
custom_field_values, with the natural keys and indexes the backend relies on.

Cascades are performed explicitly by the components, so the value table carries
no foreign keys and no ON DELETE CASCADE.
"""

from __future__ import annotations

from typing import List

import psycopg

from casebook.utils.logging import get_logger

log = get_logger(__name__)

TABLES = ("custom_field_values", "records", "custom_fields", "owners")

DDL: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS owners (
        id              TEXT PRIMARY KEY,
        username        TEXT NOT NULL,
        role            TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('admin', 'user')),
        last_checked_at TIMESTAMPTZ,
        created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS custom_fields (
        id          TEXT PRIMARY KEY,
        field_name  TEXT NOT NULL CHECK (field_name <> ''),
        field_type  TEXT NOT NULL DEFAULT 'text'
                    CHECK (field_type IN ('text', 'number', 'date')),
        position    INT NOT NULL,
        created_by  TEXT,
        created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_custom_fields_position
        ON custom_fields (position, created_at, id);
    """,
    """
    CREATE TABLE IF NOT EXISTS records (
        id             TEXT PRIMARY KEY,
        user_id        TEXT NOT NULL,
        category       TEXT NOT NULL CHECK (category IN ('CASE OB', 'PHQ')),
        record_number  INT NOT NULL CHECK (record_number >= 1),
        created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (user_id, record_number)
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_records_user_updated
        ON records (user_id, updated_at DESC);
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_records_created
        ON records (created_at DESC);
    """,
    """
    CREATE TABLE IF NOT EXISTS custom_field_values (
        record_id   TEXT NOT NULL,
        field_id    TEXT NOT NULL,
        value       TEXT NOT NULL CHECK (value <> ''),
        updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (record_id, field_id)
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_custom_field_values_field
        ON custom_field_values (field_id);
    """,
]


def bootstrap_schema(conn: psycopg.Connection) -> None:
    """Create every table and index. Idempotent."""
    with conn.transaction():
        with conn.cursor() as cur:
            for statement in DDL:
                cur.execute(statement)
    log.info("Schema bootstrapped", extra={"tables": list(TABLES)})


def truncate_all(conn: psycopg.Connection) -> None:
    """Remove every row from every table (tests and local resets only)."""
    with conn.transaction():
        with conn.cursor() as cur:
            cur.execute(f"TRUNCATE TABLE {', '.join(TABLES)};")


__all__ = ["DDL", "TABLES", "bootstrap_schema", "truncate_all"]
