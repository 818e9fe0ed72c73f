"""
Record Catalog: core record rows and per-owner sequence numbering.

Sequence numbers start at 1 per owner and only ever grow: deleting a record does
not renumber the others, and a record reassigned to another owner is appended
after that owner's highest number.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from casebook.backends.abstract import StorageBackend
from casebook.components.attribute_store import AttributeStore
from casebook.domain.errors import NotFoundError, ValidationError
from casebook.domain.models import (
    Category,
    CategoryCount,
    FullRecord,
    Record,
    parse_category,
)
from casebook.infrastructure.retry import RetryPolicy
from casebook.utils.clock import Clock, utc_now
from casebook.utils.logging import get_logger

log = get_logger(__name__)


class RecordCatalog:
    def __init__(
        self,
        backend: StorageBackend,
        values: AttributeStore,
        retry: Optional[RetryPolicy] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._backend = backend
        self._values = values
        self._retry = retry or RetryPolicy.no_retry()
        self._clock = clock

    def create(self, owner_id: str, category: Category | str) -> Record:
        """
        Create a record numbered after the owner's highest sequence number.

        Raises
        ------
        ValidationError
            If the owner id is empty or the category is not recognised.
        """
        if not owner_id:
            raise ValidationError("Record owner must not be empty")
        parsed = parse_category(category)
        record = self._retry.call(self._backend.create_record, owner_id, parsed, self._clock())
        log.info(
            f"[RECORD CREATED] #{record.sequence_number}",
            extra={"record_id": record.id, "owner_id": owner_id, "category": parsed.value},
        )
        return record

    def get(self, record_id: str) -> Record:
        record = self._retry.call(self._backend.get_record, record_id)
        if record is None:
            raise NotFoundError("Record", record_id)
        return record

    def update(
        self,
        record_id: str,
        category: Optional[Category | str] = None,
        owner_id: Optional[str] = None,
    ) -> Record:
        """
        Apply a category and/or owner change and bump `updated_at`.

        An owner change renumbers the record as the new owner's next sequence
        number. With an empty patch this only bumps `updated_at`, which is how an
        attribute-only edit is recorded.
        """
        parsed = parse_category(category) if category is not None else None
        if owner_id is not None and not owner_id:
            raise ValidationError("Record owner must not be empty")
        previous = self.get(record_id) if owner_id is not None else None
        record = self._retry.call(
            self._backend.update_record, record_id, self._clock(), parsed, owner_id
        )
        if record is None:
            raise NotFoundError("Record", record_id)
        if previous is not None and previous.owner_id != record.owner_id:
            log.info(
                "[RECORD REASSIGNED]",
                extra={
                    "record_id": record_id,
                    "from_owner": previous.owner_id,
                    "to_owner": record.owner_id,
                    "sequence_number": record.sequence_number,
                },
            )
        return record

    def touch(self, record_id: str) -> Record:
        return self.update(record_id)

    def delete(self, record_id: str) -> int:
        """
        Delete every attribute value stored for the record, then the record.

        A failed call leaves the record in place, so it can be repeated.

        Returns the number of attribute values removed.
        """
        self.get(record_id)
        removed = self._values.delete_for_record(record_id)
        self._retry.call(self._backend.delete_record, record_id)
        log.info("[RECORD DELETED]", extra={"record_id": record_id, "values_removed": removed})
        return removed

    def list_by_owner(self, owner_id: str) -> List[Record]:
        """The owner's records, most recent sequence number first."""
        return self._retry.call(self._backend.list_records, owner_id)

    def list_all(self) -> List[Record]:
        """Every record, most recently created first."""
        return self._retry.call(self._backend.list_records, None)

    def category_counts(self) -> List[CategoryCount]:
        """
        Records per owner per category. Every category appears for every owner
        that has at least one record, with zero counts filled in.
        """
        counts: Dict[str, Dict[Category, int]] = {}
        for owner_id, category, n in self._retry.call(self._backend.count_records):
            counts.setdefault(owner_id, {c: 0 for c in Category})[category] = n
        return [
            CategoryCount(owner_id=owner_id, category=category, count=per_category[category])
            for owner_id, per_category in sorted(counts.items())
            for category in Category
        ]

    def full_record(self, record_id: str) -> FullRecord:
        record = self.get(record_id)
        return FullRecord(record=record, values=self._values.get_values(record_id))

    def list_full(self, owner_id: Optional[str] = None) -> List[FullRecord]:
        records = self.list_by_owner(owner_id) if owner_id is not None else self.list_all()
        values = self._values.get_values_bulk(r.id for r in records)
        return [FullRecord(record=r, values=values.get(r.id, {})) for r in records]


__all__ = ["RecordCatalog"]
