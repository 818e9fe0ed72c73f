"""
In-process storage backend.

Keeps every table in plain dictionaries guarded by one re-entrant lock, so each
primitive is atomic with respect to the others. Used by the unit tests, by the
seed script's dry runs, and by the CLI when STORAGE_BACKEND=memory.
"""

from __future__ import annotations

import threading
import uuid
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from casebook.backends.abstract import (
    AbstractStorageBackend,
    adjacent_pair,
    field_sort_key,
    group_values,
)
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


class MemoryBackend(AbstractStorageBackend):
    """Dictionary-backed implementation of the StorageBackend protocol."""

    name: str = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._fields: Dict[str, FieldDefinition] = {}
        self._records: Dict[str, Record] = {}
        self._values: Dict[Tuple[str, str], str] = {}
        self._owners: Dict[str, Owner] = {}

    # ── Field definitions ────────────────────────────────────────────

    def create_field(
        self, name: str, field_type: FieldType, created_at: datetime, created_by: Optional[str]
    ) -> FieldDefinition:
        with self._lock:
            position = max((f.position for f in self._fields.values()), default=-1) + 1
            field = FieldDefinition(
                id=str(uuid.uuid4()),
                name=name,
                type=field_type,
                position=position,
                created_at=created_at,
                created_by=created_by,
            )
            self._fields[field.id] = field
            return field

    def get_field(self, field_id: str) -> Optional[FieldDefinition]:
        with self._lock:
            return self._fields.get(field_id)

    def list_fields(self) -> List[FieldDefinition]:
        with self._lock:
            return sorted(self._fields.values(), key=field_sort_key)

    def swap_field(self, field_id: str, direction: Direction) -> bool:
        with self._lock:
            pair = adjacent_pair(self.list_fields(), field_id, direction)
            if pair is None:
                return False
            current, neighbour = pair
            self._fields[current.id] = current.model_copy(update={"position": neighbour.position})
            self._fields[neighbour.id] = neighbour.model_copy(update={"position": current.position})
            return True

    def delete_field(self, field_id: str) -> bool:
        with self._lock:
            return self._fields.pop(field_id, None) is not None

    # ── Attribute values ─────────────────────────────────────────────

    def get_values(self, record_id: str) -> Dict[str, str]:
        with self._lock:
            return {fid: value for (rid, fid), value in self._values.items() if rid == record_id}

    def get_values_bulk(self, record_ids: Iterable[str]) -> Dict[str, Dict[str, str]]:
        wanted = set(record_ids)
        with self._lock:
            rows = [
                AttributeValue(record_id=rid, field_id=fid, value=value)
                for (rid, fid), value in self._values.items()
                if rid in wanted
            ]
        grouped = group_values(rows)
        return {record_id: grouped.get(record_id, {}) for record_id in wanted}

    def upsert_value(self, record_id: str, field_id: str, value: str) -> None:
        with self._lock:
            self._values[(record_id, field_id)] = value

    def delete_value(self, record_id: str, field_id: str) -> bool:
        with self._lock:
            return self._values.pop((record_id, field_id), None) is not None

    def delete_values_for_record(self, record_id: str) -> int:
        with self._lock:
            return self._delete_values_where(lambda key: key[0] == record_id)

    def delete_values_for_field(self, field_id: str) -> int:
        with self._lock:
            return self._delete_values_where(lambda key: key[1] == field_id)

    def _delete_values_where(self, predicate) -> int:
        doomed = [key for key in self._values if predicate(key)]
        for key in doomed:
            del self._values[key]
        return len(doomed)

    # ── Records ──────────────────────────────────────────────────────

    def _next_sequence(self, owner_id: str) -> int:
        return (
            max(
                (r.sequence_number for r in self._records.values() if r.owner_id == owner_id),
                default=0,
            )
            + 1
        )

    def create_record(self, owner_id: str, category: Category, now: datetime) -> Record:
        with self._lock:
            record = Record(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                category=category,
                sequence_number=self._next_sequence(owner_id),
                created_at=now,
                updated_at=now,
            )
            self._records[record.id] = record
            return record

    def get_record(self, record_id: str) -> Optional[Record]:
        with self._lock:
            return self._records.get(record_id)

    def update_record(
        self,
        record_id: str,
        now: datetime,
        category: Optional[Category] = None,
        owner_id: Optional[str] = None,
    ) -> Optional[Record]:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return None
            changes: Dict[str, object] = {"updated_at": now}
            if category is not None:
                changes["category"] = category
            if owner_id is not None and owner_id != record.owner_id:
                changes["owner_id"] = owner_id
                changes["sequence_number"] = self._next_sequence(owner_id)
            updated = record.model_copy(update=changes)
            self._records[record_id] = updated
            return updated

    def delete_record(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def list_records(self, owner_id: Optional[str] = None) -> List[Record]:
        with self._lock:
            if owner_id is None:
                return sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)
            owned = [r for r in self._records.values() if r.owner_id == owner_id]
            return sorted(owned, key=lambda r: r.sequence_number, reverse=True)

    def list_changed_records(self, owner_id: str, since: datetime) -> List[Record]:
        with self._lock:
            changed = [
                r
                for r in self._records.values()
                if r.owner_id == owner_id and (r.created_at > since or r.updated_at > since)
            ]
            return sorted(changed, key=lambda r: r.updated_at, reverse=True)

    def count_records(self) -> List[Tuple[str, Category, int]]:
        with self._lock:
            counts = Counter((r.owner_id, r.category) for r in self._records.values())
        return [(owner_id, category, n) for (owner_id, category), n in counts.items()]

    # ── Owners ───────────────────────────────────────────────────────

    def upsert_owner(self, owner_id: str, username: str, role: Role) -> Owner:
        with self._lock:
            existing = self._owners.get(owner_id)
            owner = Owner(
                id=owner_id,
                username=username,
                role=role,
                last_checked_at=existing.last_checked_at if existing else None,
            )
            self._owners[owner_id] = owner
            return owner

    def get_owner(self, owner_id: str) -> Optional[Owner]:
        with self._lock:
            return self._owners.get(owner_id)

    def list_owners(self) -> List[Owner]:
        with self._lock:
            return sorted(self._owners.values(), key=lambda o: o.username)

    def set_watermark(self, owner_id: str, at: datetime) -> None:
        with self._lock:
            owner = self._owners.get(owner_id) or Owner(id=owner_id, username=owner_id)
            current = owner.last_checked_at
            if current is None or at > current:
                owner = owner.model_copy(update={"last_checked_at": at})
            self._owners[owner_id] = owner


__all__ = ["MemoryBackend"]
