from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from casebook.components.field_registry import FieldCache
from casebook.domain.errors import NotFoundError, TransientError, ValidationError
from casebook.domain.models import FieldType
from casebook.service import Casebook

CONCURRENT_MOVES = 200
WORKERS = 8


def _names(book: Casebook) -> list[str]:
    return [f.name for f in book.fields.list()]


class TestCreate:
    def test_positions_start_at_zero_and_append(self, book: Casebook) -> None:
        first = book.fields.create("Enquiry Officer")
        second = book.fields.create("Offence")
        assert first.position == 0
        assert second.position == 1
        assert first.type is FieldType.TEXT

    def test_type_is_parsed_case_insensitively(self, book: Casebook) -> None:
        field = book.fields.create("Date Referred", "DATE", created_by="admin")
        assert field.type is FieldType.DATE
        assert field.created_by == "admin"

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_blank_name_is_rejected(self, book: Casebook, name) -> None:
        with pytest.raises(ValidationError):
            book.fields.create(name)

    def test_unknown_type_is_rejected(self, book: Casebook) -> None:
        with pytest.raises(ValidationError, match="field type"):
            book.fields.create("Amount", "currency")

    @pytest.mark.parametrize("name", ["User", "Record #", "Category", " Category "])
    def test_export_column_names_are_reserved(self, book: Casebook, name: str) -> None:
        with pytest.raises(ValidationError, match="reserved"):
            book.fields.create(name)
        assert book.fields.list() == []

    def test_duplicate_names_are_allowed(self, book: Casebook) -> None:
        a = book.fields.create("Notes")
        b = book.fields.create("Notes")
        assert a.id != b.id
        assert book.fields.by_name()["Notes"].id == a.id


class TestMove:
    def test_move_up_swaps_with_previous(self, book: Casebook) -> None:
        book.fields.create("F1")
        book.fields.create("F2")
        f3 = book.fields.create("F3")

        assert book.fields.move(f3.id, "up") is True

        assert _names(book) == ["F1", "F3", "F2"]

    def test_move_down_swaps_with_next(self, book: Casebook) -> None:
        f1 = book.fields.create("F1")
        book.fields.create("F2")
        book.fields.create("F3")

        book.fields.move(f1.id, "down")

        assert _names(book) == ["F2", "F1", "F3"]

    def test_move_first_up_is_noop(self, book: Casebook) -> None:
        f1 = book.fields.create("F1")
        book.fields.create("F2")

        assert book.fields.move(f1.id, "up") is False

        assert _names(book) == ["F1", "F2"]

    def test_move_last_down_is_noop(self, book: Casebook) -> None:
        book.fields.create("F1")
        f2 = book.fields.create("F2")
        assert book.fields.move(f2.id, "down") is False
        assert _names(book) == ["F1", "F2"]

    def test_move_unknown_id_is_noop(self, book: Casebook) -> None:
        book.fields.create("F1")
        assert book.fields.move("missing", "up") is False
        assert _names(book) == ["F1"]

    def test_invalid_direction_is_rejected(self, book: Casebook) -> None:
        f1 = book.fields.create("F1")
        with pytest.raises(ValidationError):
            book.fields.move(f1.id, "sideways")

    def test_swap_keeps_positions_distinct_across_gaps(self, book: Casebook) -> None:
        f1 = book.fields.create("F1")
        f2 = book.fields.create("F2")
        f3 = book.fields.create("F3")
        book.fields.delete(f2.id)

        book.fields.move(f3.id, "up")

        fields = book.fields.list()
        assert [f.id for f in fields] == [f3.id, f1.id]
        assert {f.position for f in fields} == {0, 2}

    def test_concurrent_moves_keep_positions_distinct(self, book: Casebook) -> None:
        fields = [book.fields.create(f"F{i}") for i in range(4)]
        moves = [
            (fields[i % len(fields)].id, "up" if i % 2 else "down")
            for i in range(CONCURRENT_MOVES)
        ]

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            list(pool.map(lambda move: book.fields.move(*move), moves))

        listed = book.fields.list()
        positions = [f.position for f in listed]
        assert sorted(f.id for f in listed) == sorted(f.id for f in fields)
        assert sorted(positions) == [0, 1, 2, 3]
        assert positions == sorted(positions)


class TestDelete:
    def test_delete_cascades_to_values(self, book: Casebook) -> None:
        offence = book.fields.create("Offence")
        keep = book.fields.create("OB Number")
        records = [
            book.create_record("officer-1", values={offence.id: f"case {i}", keep.id: f"OB/{i}"})
            for i in range(5)
        ]

        removed = book.fields.delete(offence.id)

        assert removed == 5
        for full in records:
            values = book.values.get_values(full.record.id)
            assert offence.id not in values
            assert values[keep.id].startswith("OB/")

    def test_failed_value_cleanup_keeps_field_for_retry(
        self, book: Casebook, memory_backend, monkeypatch
    ) -> None:
        offence = book.fields.create("Offence")
        full = book.create_record("officer-1", values={offence.id: "Theft"})

        def _fail(field_id):
            raise TransientError("connection reset")

        monkeypatch.setattr(memory_backend, "delete_values_for_field", _fail)
        with pytest.raises(TransientError):
            book.fields.delete(offence.id)

        assert book.fields.get(offence.id).name == "Offence"
        assert _names(book) == ["Offence"]

        monkeypatch.undo()
        assert book.fields.delete(offence.id) == 1
        assert _names(book) == []
        assert book.values.get_values(full.record.id) == {}

    def test_delete_unknown_field_raises(self, book: Casebook) -> None:
        with pytest.raises(NotFoundError):
            book.fields.delete("missing")

    def test_get_unknown_field_raises(self, book: Casebook) -> None:
        with pytest.raises(NotFoundError, match="Field 'missing' not found"):
            book.fields.get("missing")


class TestCache:
    def test_list_is_served_from_cache_until_invalidated(
        self, book: Casebook, memory_backend, clock
    ) -> None:
        book.fields.create("F1")
        assert _names(book) == ["F1"]

        # A write that bypasses the registry is not observed until invalidation.
        memory_backend.create_field("F2", FieldType.TEXT, clock(), None)
        assert _names(book) == ["F1"]

        book.fields.create("F3")
        assert _names(book) == ["F1", "F2", "F3"]

    def test_move_and_delete_invalidate_cache(self, book: Casebook) -> None:
        f1 = book.fields.create("F1")
        f2 = book.fields.create("F2")
        assert _names(book) == ["F1", "F2"]

        book.fields.move(f2.id, "up")
        assert _names(book) == ["F2", "F1"]

        book.fields.delete(f1.id)
        assert _names(book) == ["F2"]

    def test_field_cache_returns_copies(self) -> None:
        cache = FieldCache()
        assert cache.get() is None
        cache.put([])
        listed = cache.get()
        assert listed == []
        listed.append("x")  # type: ignore[arg-type]
        assert cache.get() == []
        cache.invalidate()
        assert cache.get() is None
