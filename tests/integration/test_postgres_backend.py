"""
Integration tests for the PostgreSQL storage backend.

These tests run the Casebook facade against a real PostgreSQL instance and
verify that:
1. Per-owner sequence numbers are assigned atomically and never renumbered
2. Field swaps, value upserts and cascades behave as on the memory backend
3. The change watermark only moves forward
4. Statement timeouts surface as TransientError

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import psycopg
import pytest

from casebook.backends.postgres import PostgresBackend
from casebook.domain.errors import TransientError
from casebook.domain.models import ChangeKind, Role
from casebook.infrastructure.schema import bootstrap_schema
from casebook.service import Casebook

CONCURRENT_CREATES = 20
CONCURRENT_MOVES = 40
WORKERS = 4

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
)


class TestRecords:
    def test_sequence_numbers_survive_deletes(self, pg_book: Casebook) -> None:
        records = [pg_book.records.create("alice", "CASE OB") for _ in range(3)]
        pg_book.records.delete(records[1].id)

        assert [r.sequence_number for r in pg_book.records.list_by_owner("alice")] == [3, 1]
        assert pg_book.records.create("alice", "PHQ").sequence_number == 4

    def test_reassignment_recomputes_number(self, pg_book: Casebook) -> None:
        a = [pg_book.records.create("alice", "CASE OB") for _ in range(3)]
        pg_book.records.create("bob", "CASE OB")

        moved = pg_book.records.update(a[2].id, owner_id="bob")

        assert moved.sequence_number == 2
        assert [r.sequence_number for r in pg_book.records.list_by_owner("alice")] == [2, 1]

    def test_concurrent_creates_get_distinct_numbers(self, pg_book: Casebook) -> None:
        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            list(pool.map(lambda _: pg_book.records.create("alice", "CASE OB"), range(CONCURRENT_CREATES)))

        numbers = sorted(r.sequence_number for r in pg_book.records.list_by_owner("alice"))
        assert numbers == list(range(1, CONCURRENT_CREATES + 1))

    def test_category_counts(self, pg_book: Casebook) -> None:
        pg_book.records.create("alice", "PHQ")
        counts = {(c.owner_id, c.category.value): c.count for c in pg_book.records.category_counts()}
        assert counts == {("alice", "CASE OB"): 0, ("alice", "PHQ"): 1}


class TestFieldsAndValues:
    def test_move_and_boundaries(self, pg_book: Casebook) -> None:
        f1 = pg_book.fields.create("F1")
        pg_book.fields.create("F2")
        f3 = pg_book.fields.create("F3")

        assert pg_book.fields.move(f3.id, "up") is True
        assert pg_book.fields.move(f1.id, "up") is False
        assert [f.name for f in pg_book.fields.list()] == ["F1", "F3", "F2"]

    def test_concurrent_moves_keep_positions_distinct(self, pg_book: Casebook) -> None:
        fields = [pg_book.fields.create(f"F{i}") for i in range(4)]
        moves = [
            (fields[i % len(fields)].id, "up" if i % 2 else "down")
            for i in range(CONCURRENT_MOVES)
        ]

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            list(pool.map(lambda move: pg_book.fields.move(*move), moves))

        listed = pg_book.fields.list()
        positions = [f.position for f in listed]
        assert sorted(f.id for f in listed) == sorted(f.id for f in fields)
        assert sorted(positions) == [0, 1, 2, 3]
        assert positions == sorted(positions)

    def test_upsert_is_idempotent_and_empty_deletes(self, pg_book: Casebook, db_connection) -> None:
        field = pg_book.fields.create("Offence")
        record = pg_book.records.create("alice", "CASE OB")

        pg_book.values.set_values(record.id, {field.id: "v"})
        pg_book.values.set_values(record.id, {field.id: "v"})
        with db_connection.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM custom_field_values WHERE record_id = %s;", (record.id,)
            )
            assert cur.fetchone()[0] == 1
        db_connection.commit()

        pg_book.values.set_values(record.id, {field.id: ""})
        assert pg_book.values.get_values(record.id) == {}

    def test_field_delete_cascades(self, pg_book: Casebook) -> None:
        field = pg_book.fields.create("Offence")
        ids = [
            pg_book.create_record("alice", values={field.id: str(i)}).record.id for i in range(5)
        ]

        assert pg_book.fields.delete(field.id) == 5
        assert all(field.id not in v for v in pg_book.values.get_values_bulk(ids).values())


class TestWatermark:
    def test_check_then_recheck(self, pg_book: Casebook) -> None:
        assert pg_book.check_notifications("alice") == []

        pg_book.owners.register("alice", "alice", Role.USER)
        pg_book.watermark.acknowledge("alice")
        record = pg_book.records.create("alice", "CASE OB")

        changes = pg_book.check_notifications("alice")
        assert [(c.record_id, c.kind) for c in changes] == [(record.id, ChangeKind.NEW)]
        assert pg_book.check_notifications("alice") == []

    def test_watermark_never_lowered(self, pg_book: Casebook) -> None:
        at = pg_book.watermark.acknowledge("alice")
        pg_book.watermark.acknowledge("alice", at=at - timedelta(hours=1))
        assert pg_book.watermark.last_checked_at("alice") == at

    def test_register_keeps_watermark(self, pg_book: Casebook) -> None:
        at = pg_book.watermark.acknowledge("alice")
        pg_book.owners.register("alice", "Alice A.", Role.ADMIN)
        owner = pg_book.owners.get("alice")
        assert (owner.username, owner.role, owner.last_checked_at) == ("Alice A.", Role.ADMIN, at)


def test_statement_timeout_is_transient(test_dsn: str, db_connection) -> None:
    backend = PostgresBackend.from_dsn(test_dsn, min_size=1, max_size=1)
    try:
        with pytest.raises(TransientError):
            with backend._cursor("sleep") as cur:
                cur.execute("SET LOCAL statement_timeout = 50;")
                cur.execute("SELECT pg_sleep(1);")
    finally:
        backend.close()


def test_schema_bootstrap_is_idempotent(db_connection: psycopg.Connection) -> None:
    bootstrap_schema(db_connection)
    bootstrap_schema(db_connection)
