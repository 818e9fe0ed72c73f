"""
Attribute Store: sparse custom values keyed on (record_id, field_id).

Values are stored as text whatever the declared field type. Writing an empty
value deletes the row, so "never set" and "set to empty" are the same observable
state. Every write is a per-key upsert; a record's values are never cleared and
re-inserted as a whole, so readers never observe a record with zero attributes
mid-update.
"""

from __future__ import annotations

import math
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Mapping, Optional

from casebook.backends.abstract import StorageBackend
from casebook.domain.errors import ValidationError
from casebook.domain.models import FieldDefinition, FieldType
from casebook.infrastructure.retry import RetryPolicy
from casebook.utils.logging import get_logger

log = get_logger(__name__)


def validate_value(field: FieldDefinition, raw: Optional[str]) -> str:
    """
    Check `raw` against the field's declared type and return the text to store.

    Empty values are always accepted (they clear the attribute). Numbers must
    parse as finite decimals, dates as ISO-8601 calendar dates (YYYY-MM-DD).
    """
    value = "" if raw is None else str(raw)
    if value == "" or field.type is FieldType.TEXT:
        return value
    if field.type is FieldType.NUMBER:
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"Field '{field.name}' expects a number, got {value!r}") from None
        if not number.is_finite():
            raise ValidationError(f"Field '{field.name}' expects a finite number, got {value!r}")
        return value.strip()
    try:
        date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(
            f"Field '{field.name}' expects a date (YYYY-MM-DD), got {value!r}"
        ) from None
    return value.strip()


def coerce_cell(raw: object) -> str:
    """Render a spreadsheet cell (str, int, float, date, None) as stored text."""
    if raw is None:
        return ""
    if isinstance(raw, float):
        if math.isnan(raw):
            return ""
        if raw.is_integer():
            return str(int(raw))
    if isinstance(raw, date):
        return raw.isoformat()
    return str(raw)


class AttributeStore:
    def __init__(self, backend: StorageBackend, retry: Optional[RetryPolicy] = None) -> None:
        self._backend = backend
        self._retry = retry or RetryPolicy.no_retry()

    def get_values(self, record_id: str) -> Dict[str, str]:
        """Field id -> value for every field that has a value on this record."""
        return self._retry.call(self._backend.get_values, record_id)

    def get_values_bulk(self, record_ids: Iterable[str]) -> Dict[str, Dict[str, str]]:
        ids = list(record_ids)
        values = self._retry.call(self._backend.get_values_bulk, ids)
        return {record_id: values.get(record_id, {}) for record_id in ids}

    @staticmethod
    def for_display(values: Mapping[str, str], fields: List[FieldDefinition]) -> Dict[str, str]:
        """One entry per field in list order, missing values shown as ''."""
        return {field.id: values.get(field.id, "") for field in fields}

    def get_values_display(self, record_id: str, fields: List[FieldDefinition]) -> Dict[str, str]:
        return self.for_display(self.get_values(record_id), fields)

    def set_values(self, record_id: str, values: Mapping[str, Optional[str]]) -> None:
        """
        Upsert each non-empty value; delete the row for each empty (or None) one.

        Each key transitions atomically on its own; there is no cross-field
        transaction. Re-applying the same mapping is idempotent.
        """
        written = cleared = 0
        for field_id, raw in values.items():
            value = "" if raw is None else str(raw)
            if value == "":
                self._retry.call(self._backend.delete_value, record_id, field_id)
                cleared += 1
            else:
                self._retry.call(self._backend.upsert_value, record_id, field_id, value)
                written += 1
        log.debug(
            "Attribute values written",
            extra={"record_id": record_id, "written": written, "cleared": cleared},
        )

    def delete_for_record(self, record_id: str) -> int:
        return self._retry.call(self._backend.delete_values_for_record, record_id)

    def delete_for_field(self, field_id: str) -> int:
        return self._retry.call(self._backend.delete_values_for_field, field_id)


__all__ = ["AttributeStore", "coerce_cell", "validate_value"]
