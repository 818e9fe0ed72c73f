"""
Field Registry: the ordered set of custom attribute definitions.

`list()` order (ascending position) is the canonical display and export order
everywhere. Reordering swaps positions with the list-order neighbour rather than
renumbering, so positions may have gaps while relative order stays consistent.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Dict, List, Optional

from casebook.backends.abstract import StorageBackend
from casebook.components.attribute_store import AttributeStore
from casebook.domain.errors import NotFoundError, ValidationError
from casebook.domain.models import (
    RESERVED_FIELD_NAMES,
    FieldDefinition,
    FieldType,
    parse_direction,
    parse_field_type,
)
from casebook.infrastructure.retry import RetryPolicy
from casebook.utils.clock import Clock, utc_now
from casebook.utils.logging import get_logger

log = get_logger(__name__)


class FieldCache:
    """
    Holds the last listed field definitions until explicitly invalidated.

    The registry invalidates it on every create, move and delete it performs.
    Writers in other processes are not observed, so share one cache only among
    registries that share a backend within one process.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fields: Optional[List[FieldDefinition]] = None

    def get(self) -> Optional[List[FieldDefinition]]:
        with self._lock:
            return list(self._fields) if self._fields is not None else None

    def put(self, fields: List[FieldDefinition]) -> None:
        with self._lock:
            self._fields = list(fields)

    def invalidate(self) -> None:
        with self._lock:
            self._fields = None


class FieldRegistry:
    def __init__(
        self,
        backend: StorageBackend,
        values: AttributeStore,
        retry: Optional[RetryPolicy] = None,
        cache: Optional[FieldCache] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._backend = backend
        self._values = values
        self._retry = retry or RetryPolicy.no_retry()
        self._cache = cache
        self._clock = clock

    def _invalidate(self) -> None:
        if self._cache is not None:
            self._cache.invalidate()

    def create(
        self, name: str, field_type: FieldType | str = FieldType.TEXT, created_by: Optional[str] = None
    ) -> FieldDefinition:
        """
        Append a new field after every existing one.

        Raises
        ------
        ValidationError
            If `name` is empty, blank or one of the reserved export columns
            (User, Record #, Category), or `field_type` is not text/number/date.
        """
        if name is None or not name.strip():
            raise ValidationError("Field name must not be empty")
        if name.strip() in RESERVED_FIELD_NAMES:
            raise ValidationError(f"Field name '{name.strip()}' is reserved")
        ftype = parse_field_type(field_type)
        created_at: datetime = self._clock()
        field = self._retry.call(self._backend.create_field, name.strip(), ftype, created_at, created_by)
        self._invalidate()
        log.info(
            f"[FIELD CREATED] {field.name}",
            extra={"field_id": field.id, "field_type": field.type.value, "position": field.position},
        )
        return field

    def list(self) -> List[FieldDefinition]:
        if self._cache is not None:
            cached = self._cache.get()
            if cached is not None:
                return cached
        fields = self._retry.call(self._backend.list_fields)
        if self._cache is not None:
            self._cache.put(fields)
        return fields

    def get(self, field_id: str) -> FieldDefinition:
        field = self._retry.call(self._backend.get_field, field_id)
        if field is None:
            raise NotFoundError("Field", field_id)
        return field

    def by_name(self) -> Dict[str, FieldDefinition]:
        """Field name -> definition; on duplicate names the first in list order wins."""
        mapping: Dict[str, FieldDefinition] = {}
        for field in self.list():
            mapping.setdefault(field.name, field)
        return mapping

    def move(self, field_id: str, direction: str) -> bool:
        """
        Swap the field with its neighbour in list order.

        Unknown ids and moves past either end are no-ops and return False. Not
        retried: a swap re-applied after an ambiguous failure would undo itself.
        """
        parsed = parse_direction(direction)
        moved = self._backend.swap_field(field_id, parsed)
        self._invalidate()
        if moved:
            log.info("[FIELD MOVED]", extra={"field_id": field_id, "direction": parsed.value})
        else:
            log.debug("Field move was a no-op", extra={"field_id": field_id, "direction": parsed.value})
        return moved

    def delete(self, field_id: str) -> int:
        """
        Remove every value stored for the field, then its definition.

        A failed call leaves the definition in place, so it can be repeated.

        Returns the number of attribute values removed.

        Raises
        ------
        NotFoundError
            If the id is unknown.
        """
        self.get(field_id)
        removed = self._values.delete_for_field(field_id)
        self._retry.call(self._backend.delete_field, field_id)
        self._invalidate()
        log.info("[FIELD DELETED]", extra={"field_id": field_id, "values_removed": removed})
        return removed


__all__ = ["FieldCache", "FieldRegistry"]
