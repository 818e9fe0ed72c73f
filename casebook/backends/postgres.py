"""
PostgreSQL storage backend built on psycopg 3 and psycopg_pool.

Each primitive runs in a single pooled transaction (the pool commits on a clean
exit and rolls back on error):

- record creation and owner reassignment take a transaction-scoped advisory lock
  on the owner and compute `MAX(record_number) + 1` inside the same statement, so
  a failed create never consumes a number;
- field creation and swaps take one advisory lock for the whole field order and
  read the current order `FOR UPDATE`, so concurrent moves cannot compute stale
  positions;
- attribute writes are `INSERT ... ON CONFLICT (record_id, field_id) DO UPDATE`.

Driver timeouts and connection failures are re-raised as TransientError.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Generator, Iterable, List, Optional, Tuple

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from casebook.backends.abstract import AbstractStorageBackend, adjacent_pair, group_values
from casebook.config import Settings
from casebook.domain.errors import TransientError
from casebook.domain.models import (
    AttributeValue,
    Category,
    Direction,
    FieldDefinition,
    FieldType,
    Owner,
    Record,
    Role,
)
from casebook.infrastructure.db_factory import connection_kwargs, get_sync_pool
from casebook.utils.logging import get_logger

log = get_logger(__name__)

_FIELD_COLUMNS = "id, field_name AS name, field_type AS type, position, created_at, created_by"
_RECORD_COLUMNS = (
    "id, user_id AS owner_id, category, record_number AS sequence_number, created_at, updated_at"
)
_OWNER_COLUMNS = "id, username, role, last_checked_at"

_FIELD_ORDER_LOCK = "casebook.custom_fields.order"
_OWNER_LOCK_PREFIX = "casebook.records.owner:"

_TRANSIENT_ERRORS = (
    psycopg.OperationalError,  # includes QueryCanceled (statement timeout) and deadlocks
    psycopg.InterfaceError,
    psycopg.errors.UniqueViolation,  # concurrent record_number allocation
    PoolTimeout,
)


class PostgresBackend(AbstractStorageBackend):
    """
    StorageBackend over a psycopg ConnectionPool.

    Parameters
    ----------
    pool : ConnectionPool
        Pool to borrow connections from. The backend closes it only if it owns it.
    owns_pool : bool
        Whether `close()` should close the pool.
    """

    name: str = "postgres"

    def __init__(self, pool: ConnectionPool, owns_pool: bool = False) -> None:
        self._pool = pool
        self._owns_pool = owns_pool

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PostgresBackend":
        return cls(get_sync_pool(settings))

    @classmethod
    def from_dsn(cls, dsn: str, min_size: int = 1, max_size: int = 5) -> "PostgresBackend":
        pool = ConnectionPool(
            conninfo=dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs=connection_kwargs(),
            open=True,
        )
        return cls(pool, owns_pool=True)

    @contextmanager
    def _cursor(self, operation: str) -> Generator[psycopg.Cursor, None, None]:
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    yield cur
        except _TRANSIENT_ERRORS as exc:
            log.warning(
                f"[STORAGE TRANSIENT] {operation}",
                extra={"operation": operation, "error": str(exc)},
            )
            raise TransientError(f"Storage operation '{operation}' failed: {exc}") from exc

    # ── Field definitions ────────────────────────────────────────────

    def create_field(
        self, name: str, field_type: FieldType, created_at: datetime, created_by: Optional[str]
    ) -> FieldDefinition:
        with self._cursor("create_field") as cur:
            cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s));", (_FIELD_ORDER_LOCK,))
            cur.execute(
                f"""
                INSERT INTO custom_fields
                    (id, field_name, field_type, position, created_by, created_at)
                SELECT %s, %s, %s, COALESCE(MAX(position), -1) + 1, %s, %s
                FROM custom_fields
                RETURNING {_FIELD_COLUMNS};
                """,
                (str(uuid.uuid4()), name, field_type.value, created_by, created_at),
            )
            row = cur.fetchone()
        return FieldDefinition.model_validate(row)

    def get_field(self, field_id: str) -> Optional[FieldDefinition]:
        with self._cursor("get_field") as cur:
            cur.execute(f"SELECT {_FIELD_COLUMNS} FROM custom_fields WHERE id = %s;", (field_id,))
            row = cur.fetchone()
        return FieldDefinition.model_validate(row) if row else None

    def list_fields(self) -> List[FieldDefinition]:
        with self._cursor("list_fields") as cur:
            cur.execute(
                f"SELECT {_FIELD_COLUMNS} FROM custom_fields ORDER BY position, created_at, id;"
            )
            rows = cur.fetchall()
        return [FieldDefinition.model_validate(row) for row in rows]

    def swap_field(self, field_id: str, direction: Direction) -> bool:
        with self._cursor("swap_field") as cur:
            cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s));", (_FIELD_ORDER_LOCK,))
            cur.execute(
                f"""
                SELECT {_FIELD_COLUMNS} FROM custom_fields
                ORDER BY position, created_at, id
                FOR UPDATE;
                """
            )
            fields = [FieldDefinition.model_validate(row) for row in cur.fetchall()]
            pair = adjacent_pair(fields, field_id, direction)
            if pair is None:
                return False
            current, neighbour = pair
            cur.execute(
                """
                UPDATE custom_fields
                SET position = CASE WHEN id = %s THEN %s ELSE %s END
                WHERE id IN (%s, %s);
                """,
                (current.id, neighbour.position, current.position, current.id, neighbour.id),
            )
        return True

    def delete_field(self, field_id: str) -> bool:
        with self._cursor("delete_field") as cur:
            cur.execute("DELETE FROM custom_fields WHERE id = %s;", (field_id,))
            return cur.rowcount > 0

    # ── Attribute values ─────────────────────────────────────────────

    def get_values(self, record_id: str) -> Dict[str, str]:
        with self._cursor("get_values") as cur:
            cur.execute(
                "SELECT field_id, value FROM custom_field_values WHERE record_id = %s;",
                (record_id,),
            )
            rows = cur.fetchall()
        return {row["field_id"]: row["value"] for row in rows}

    def get_values_bulk(self, record_ids: Iterable[str]) -> Dict[str, Dict[str, str]]:
        ids = list(record_ids)
        if not ids:
            return {}
        with self._cursor("get_values_bulk") as cur:
            cur.execute(
                """
                SELECT record_id, field_id, value FROM custom_field_values
                WHERE record_id = ANY(%s);
                """,
                (ids,),
            )
            rows = cur.fetchall()
        grouped = group_values(AttributeValue.model_validate(row) for row in rows)
        return {record_id: grouped.get(record_id, {}) for record_id in ids}

    def upsert_value(self, record_id: str, field_id: str, value: str) -> None:
        with self._cursor("upsert_value") as cur:
            cur.execute(
                """
                INSERT INTO custom_field_values (record_id, field_id, value, updated_at)
                VALUES (%s, %s, %s, now())
                ON CONFLICT (record_id, field_id)
                DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at;
                """,
                (record_id, field_id, value),
            )

    def delete_value(self, record_id: str, field_id: str) -> bool:
        with self._cursor("delete_value") as cur:
            cur.execute(
                "DELETE FROM custom_field_values WHERE record_id = %s AND field_id = %s;",
                (record_id, field_id),
            )
            return cur.rowcount > 0

    def delete_values_for_record(self, record_id: str) -> int:
        with self._cursor("delete_values_for_record") as cur:
            cur.execute("DELETE FROM custom_field_values WHERE record_id = %s;", (record_id,))
            return cur.rowcount

    def delete_values_for_field(self, field_id: str) -> int:
        with self._cursor("delete_values_for_field") as cur:
            cur.execute("DELETE FROM custom_field_values WHERE field_id = %s;", (field_id,))
            return cur.rowcount

    # ── Records ──────────────────────────────────────────────────────

    @staticmethod
    def _lock_owner(cur: psycopg.Cursor, owner_id: str) -> None:
        cur.execute(
            "SELECT pg_advisory_xact_lock(hashtext(%s));", (_OWNER_LOCK_PREFIX + owner_id,)
        )

    def create_record(self, owner_id: str, category: Category, now: datetime) -> Record:
        with self._cursor("create_record") as cur:
            self._lock_owner(cur, owner_id)
            cur.execute(
                f"""
                INSERT INTO records
                    (id, user_id, category, record_number, created_at, updated_at)
                SELECT %s, %s, %s, COALESCE(MAX(record_number), 0) + 1, %s, %s
                FROM records WHERE user_id = %s
                RETURNING {_RECORD_COLUMNS};
                """,
                (str(uuid.uuid4()), owner_id, category.value, now, now, owner_id),
            )
            row = cur.fetchone()
        return Record.model_validate(row)

    def get_record(self, record_id: str) -> Optional[Record]:
        with self._cursor("get_record") as cur:
            cur.execute(f"SELECT {_RECORD_COLUMNS} FROM records WHERE id = %s;", (record_id,))
            row = cur.fetchone()
        return Record.model_validate(row) if row else None

    def update_record(
        self,
        record_id: str,
        now: datetime,
        category: Optional[Category] = None,
        owner_id: Optional[str] = None,
    ) -> Optional[Record]:
        with self._cursor("update_record") as cur:
            cur.execute(
                f"SELECT {_RECORD_COLUMNS} FROM records WHERE id = %s FOR UPDATE;", (record_id,)
            )
            row = cur.fetchone()
            if row is None:
                return None
            current = Record.model_validate(row)
            new_category = category or current.category
            new_owner = current.owner_id
            sequence_sql, sequence_params = "record_number", ()
            if owner_id is not None and owner_id != current.owner_id:
                self._lock_owner(cur, owner_id)
                new_owner = owner_id
                sequence_sql = (
                    "(SELECT COALESCE(MAX(record_number), 0) + 1 FROM records WHERE user_id = %s)"
                )
                sequence_params = (owner_id,)
            cur.execute(
                f"""
                UPDATE records
                SET category = %s, user_id = %s, record_number = {sequence_sql}, updated_at = %s
                WHERE id = %s
                RETURNING {_RECORD_COLUMNS};
                """,
                (new_category.value, new_owner, *sequence_params, now, record_id),
            )
            row = cur.fetchone()
        return Record.model_validate(row)

    def delete_record(self, record_id: str) -> bool:
        with self._cursor("delete_record") as cur:
            cur.execute("DELETE FROM records WHERE id = %s;", (record_id,))
            return cur.rowcount > 0

    def list_records(self, owner_id: Optional[str] = None) -> List[Record]:
        with self._cursor("list_records") as cur:
            if owner_id is None:
                cur.execute(f"SELECT {_RECORD_COLUMNS} FROM records ORDER BY created_at DESC;")
            else:
                cur.execute(
                    f"""
                    SELECT {_RECORD_COLUMNS} FROM records
                    WHERE user_id = %s ORDER BY record_number DESC;
                    """,
                    (owner_id,),
                )
            rows = cur.fetchall()
        return [Record.model_validate(row) for row in rows]

    def list_changed_records(self, owner_id: str, since: datetime) -> List[Record]:
        with self._cursor("list_changed_records") as cur:
            cur.execute(
                f"""
                SELECT {_RECORD_COLUMNS} FROM records
                WHERE user_id = %s AND (created_at > %s OR updated_at > %s)
                ORDER BY updated_at DESC;
                """,
                (owner_id, since, since),
            )
            rows = cur.fetchall()
        return [Record.model_validate(row) for row in rows]

    def count_records(self) -> List[Tuple[str, Category, int]]:
        with self._cursor("count_records") as cur:
            cur.execute(
                """
                SELECT user_id, category, COUNT(*) AS n
                FROM records GROUP BY user_id, category;
                """
            )
            rows = cur.fetchall()
        return [(row["user_id"], Category(row["category"]), int(row["n"])) for row in rows]

    # ── Owners ───────────────────────────────────────────────────────

    def upsert_owner(self, owner_id: str, username: str, role: Role) -> Owner:
        with self._cursor("upsert_owner") as cur:
            cur.execute(
                f"""
                INSERT INTO owners (id, username, role) VALUES (%s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET username = EXCLUDED.username, role = EXCLUDED.role
                RETURNING {_OWNER_COLUMNS};
                """,
                (owner_id, username, role.value),
            )
            row = cur.fetchone()
        return Owner.model_validate(row)

    def get_owner(self, owner_id: str) -> Optional[Owner]:
        with self._cursor("get_owner") as cur:
            cur.execute(f"SELECT {_OWNER_COLUMNS} FROM owners WHERE id = %s;", (owner_id,))
            row = cur.fetchone()
        return Owner.model_validate(row) if row else None

    def list_owners(self) -> List[Owner]:
        with self._cursor("list_owners") as cur:
            cur.execute(f"SELECT {_OWNER_COLUMNS} FROM owners ORDER BY username;")
            rows = cur.fetchall()
        return [Owner.model_validate(row) for row in rows]

    def set_watermark(self, owner_id: str, at: datetime) -> None:
        with self._cursor("set_watermark") as cur:
            # GREATEST ignores NULL, so a never-checked owner takes `at`.
            cur.execute(
                """
                INSERT INTO owners (id, username, last_checked_at) VALUES (%s, %s, %s)
                ON CONFLICT (id) DO UPDATE
                SET last_checked_at = GREATEST(owners.last_checked_at, EXCLUDED.last_checked_at);
                """,
                (owner_id, owner_id, at),
            )

    def close(self) -> None:
        if self._owns_pool:
            self._pool.close()


__all__ = ["PostgresBackend"]
