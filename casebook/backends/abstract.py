"""
Storage backend interfaces for Casebook.

Every backend (PostgreSQL, in-memory) implements the StorageBackend protocol.
Backends own the primitives that must be atomic: per-owner sequence number
assignment, field position assignment and swaps, and upsert on the
(record_id, field_id) natural key. Validation, cascades and logging live in the
components that call them.

Backends raise `TransientError` for timeouts and connection failures and never
swallow storage errors.
"""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

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


def field_sort_key(field: FieldDefinition) -> Tuple[int, datetime, str]:
    """Canonical list order: position, then creation time, then id."""
    return (field.position, field.created_at, field.id)


def adjacent_pair(
    fields: Sequence[FieldDefinition], field_id: str, direction: Direction
) -> Optional[Tuple[FieldDefinition, FieldDefinition]]:
    """
    Return (field, neighbour) for a move in list order, or None when the move is a
    no-op (unknown id, or already at the boundary in that direction).

    `fields` must already be in canonical list order.
    """
    index = next((i for i, f in enumerate(fields) if f.id == field_id), None)
    if index is None:
        return None
    target = index - 1 if direction is Direction.UP else index + 1
    if target < 0 or target >= len(fields):
        return None
    return fields[index], fields[target]


@runtime_checkable
class StorageBackend(Protocol):
    """
    Common interface all storage backends implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    """

    name: str

    # Field definitions
    def create_field(
        self, name: str, field_type: FieldType, created_at: datetime, created_by: Optional[str]
    ) -> FieldDefinition: ...

    def get_field(self, field_id: str) -> Optional[FieldDefinition]: ...

    def list_fields(self) -> List[FieldDefinition]: ...

    def swap_field(self, field_id: str, direction: Direction) -> bool: ...

    def delete_field(self, field_id: str) -> bool: ...

    # Attribute values
    def get_values(self, record_id: str) -> Dict[str, str]: ...

    def get_values_bulk(self, record_ids: Iterable[str]) -> Dict[str, Dict[str, str]]: ...

    def upsert_value(self, record_id: str, field_id: str, value: str) -> None: ...

    def delete_value(self, record_id: str, field_id: str) -> bool: ...

    def delete_values_for_record(self, record_id: str) -> int: ...

    def delete_values_for_field(self, field_id: str) -> int: ...

    # Records
    def create_record(self, owner_id: str, category: Category, now: datetime) -> Record: ...

    def get_record(self, record_id: str) -> Optional[Record]: ...

    def update_record(
        self,
        record_id: str,
        now: datetime,
        category: Optional[Category] = None,
        owner_id: Optional[str] = None,
    ) -> Optional[Record]: ...

    def delete_record(self, record_id: str) -> bool: ...

    def list_records(self, owner_id: Optional[str] = None) -> List[Record]: ...

    def list_changed_records(self, owner_id: str, since: datetime) -> List[Record]: ...

    def count_records(self) -> List[Tuple[str, Category, int]]: ...

    # Owners
    def upsert_owner(self, owner_id: str, username: str, role: Role) -> Owner: ...

    def get_owner(self, owner_id: str) -> Optional[Owner]: ...

    def list_owners(self) -> List[Owner]: ...

    def set_watermark(self, owner_id: str, at: datetime) -> None: ...

    # Lifecycle
    def close(self) -> None: ...


class AbstractStorageBackend(abc.ABC):
    """
    Optional ABC helper for class-based backends.

    Subclasses set `name` and implement every primitive; `get_values_bulk`
    falls back to one `get_values` call per record.
    """

    name: str

    @abc.abstractmethod
    def create_field(
        self, name: str, field_type: FieldType, created_at: datetime, created_by: Optional[str]
    ) -> FieldDefinition:
        """Insert a field at position max(existing) + 1 (0 when empty)."""
        raise NotImplementedError

    @abc.abstractmethod
    def get_field(self, field_id: str) -> Optional[FieldDefinition]:
        raise NotImplementedError

    @abc.abstractmethod
    def list_fields(self) -> List[FieldDefinition]:
        """All fields in canonical list order."""
        raise NotImplementedError

    @abc.abstractmethod
    def swap_field(self, field_id: str, direction: Direction) -> bool:
        """
        Atomically swap positions with the list-order neighbour. Returns False for
        no-ops (unknown id or boundary).
        """
        raise NotImplementedError

    @abc.abstractmethod
    def delete_field(self, field_id: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def get_values(self, record_id: str) -> Dict[str, str]:
        raise NotImplementedError

    def get_values_bulk(self, record_ids: Iterable[str]) -> Dict[str, Dict[str, str]]:
        return {record_id: self.get_values(record_id) for record_id in record_ids}

    @abc.abstractmethod
    def upsert_value(self, record_id: str, field_id: str, value: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def delete_value(self, record_id: str, field_id: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def delete_values_for_record(self, record_id: str) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def delete_values_for_field(self, field_id: str) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def create_record(self, owner_id: str, category: Category, now: datetime) -> Record:
        """Insert a record with the owner's next sequence number, atomically."""
        raise NotImplementedError

    @abc.abstractmethod
    def get_record(self, record_id: str) -> Optional[Record]:
        raise NotImplementedError

    @abc.abstractmethod
    def update_record(
        self,
        record_id: str,
        now: datetime,
        category: Optional[Category] = None,
        owner_id: Optional[str] = None,
    ) -> Optional[Record]:
        """
        Apply the patch and set updated_at = now. An owner change renumbers the
        record as the new owner's next sequence number. Returns None for unknown ids.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def delete_record(self, record_id: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def list_records(self, owner_id: Optional[str] = None) -> List[Record]:
        """
        One owner's records by sequence number descending, or every record by
        created_at descending when owner_id is None.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def list_changed_records(self, owner_id: str, since: datetime) -> List[Record]:
        """Owner's records created or updated after `since`, updated_at descending."""
        raise NotImplementedError

    @abc.abstractmethod
    def count_records(self) -> List[Tuple[str, Category, int]]:
        """(owner_id, category, count) for every non-empty group."""
        raise NotImplementedError

    @abc.abstractmethod
    def upsert_owner(self, owner_id: str, username: str, role: Role) -> Owner:
        """Create or rename an owner; an existing watermark is preserved."""
        raise NotImplementedError

    @abc.abstractmethod
    def get_owner(self, owner_id: str) -> Optional[Owner]:
        raise NotImplementedError

    @abc.abstractmethod
    def list_owners(self) -> List[Owner]:
        raise NotImplementedError

    @abc.abstractmethod
    def set_watermark(self, owner_id: str, at: datetime) -> None:
        """
        Raise the owner's watermark to `at`, never lowering it. Creates the owner
        row (username = id) when missing.
        """
        raise NotImplementedError

    def close(self) -> None:  # pragma: no cover - nothing to release by default
        return None


def group_values(rows: Iterable[AttributeValue]) -> Dict[str, Dict[str, str]]:
    """Fold attribute value rows into record id -> {field id: value}."""
    grouped: Dict[str, Dict[str, str]] = {}
    for row in rows:
        grouped.setdefault(row.record_id, {})[row.field_id] = row.value
    return grouped


__all__ = [
    "AbstractStorageBackend",
    "StorageBackend",
    "adjacent_pair",
    "field_sort_key",
    "group_values",
]
