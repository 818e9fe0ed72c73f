"""
Casebook facade: composes the Field Registry, Attribute Store, Record Catalog,
Owner Directory and Change Watermark over one storage backend, and implements
the multi-step logical edits.

Usage:
    from casebook.service import build_casebook

    book = build_casebook()
    field = book.fields.create("Offence", "text")
    full = book.create_record("officer-1", "CASE OB", {field.id: "Burglary"})
    book.save_record(full.record.id, owner_id="officer-2")
    changes = book.check_notifications("officer-2")

Within one save the record row is written before its attribute values, and a
new record exists before any value is written for it.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Mapping, Optional

from casebook.backends.abstract import StorageBackend
from casebook.backends.memory import MemoryBackend
from casebook.backends.postgres import PostgresBackend
from casebook.components.attribute_store import AttributeStore, validate_value
from casebook.components.change_watermark import ChangeWatermark
from casebook.components.field_registry import FieldCache, FieldRegistry
from casebook.components.owner_directory import OwnerDirectory
from casebook.components.record_catalog import RecordCatalog
from casebook.config import Settings, get_settings
from casebook.domain.errors import ValidationError
from casebook.domain.models import (
    DEFAULT_CATEGORY,
    Category,
    FieldDefinition,
    FullRecord,
    RecordChange,
)
from casebook.infrastructure.retry import RetryPolicy
from casebook.utils.clock import Clock, utc_now
from casebook.utils.logging import get_logger

log = get_logger(__name__)


class Casebook:
    """
    Entry point for every inbound call from the UI/CLI layer.

    Attributes
    ----------
    fields : FieldRegistry
    values : AttributeStore
    records : RecordCatalog
    owners : OwnerDirectory
    watermark : ChangeWatermark
    """

    def __init__(
        self,
        backend: StorageBackend,
        retry: Optional[RetryPolicy] = None,
        clock: Clock = utc_now,
        field_cache: Optional[FieldCache] = None,
    ) -> None:
        self.backend = backend
        retry = retry or RetryPolicy.from_settings()
        self.values = AttributeStore(backend, retry=retry)
        self.fields = FieldRegistry(
            backend, self.values, retry=retry, cache=field_cache, clock=clock
        )
        self.records = RecordCatalog(backend, self.values, retry=retry, clock=clock)
        self.owners = OwnerDirectory(backend, retry=retry)
        self.watermark = ChangeWatermark(backend, retry=retry, clock=clock)

    def _validated_values(
        self, values: Optional[Mapping[str, Optional[str]]]
    ) -> Dict[str, str]:
        if not values:
            return {}
        known: Dict[str, FieldDefinition] = {f.id: f for f in self.fields.list()}
        validated: Dict[str, str] = {}
        for field_id, raw in values.items():
            field = known.get(field_id)
            if field is None:
                raise ValidationError(f"Unknown field id '{field_id}'")
            validated[field_id] = validate_value(field, raw)
        return validated

    def create_record(
        self,
        owner_id: str,
        category: Category | str = DEFAULT_CATEGORY,
        values: Optional[Mapping[str, Optional[str]]] = None,
    ) -> FullRecord:
        """
        Create a record and then write its attribute values.

        Values are validated against the field types before anything is written,
        so a rejected value never leaves a half-created record behind.
        """
        validated = self._validated_values(values)
        record = self.records.create(owner_id, category)
        if validated:
            self.values.set_values(record.id, validated)
        return FullRecord(record=record, values=self.values.get_values(record.id))

    def save_record(
        self,
        record_id: str,
        category: Optional[Category | str] = None,
        owner_id: Optional[str] = None,
        values: Optional[Mapping[str, Optional[str]]] = None,
    ) -> FullRecord:
        """
        Apply one logical edit: the record row first (always bumping
        `updated_at`), then the attribute values.
        """
        validated = self._validated_values(values)
        record = self.records.update(record_id, category=category, owner_id=owner_id)
        if validated:
            self.values.set_values(record_id, validated)
        log.info(
            f"[RECORD SAVED] #{record.sequence_number}",
            extra={"record_id": record_id, "owner_id": record.owner_id, "values": len(validated)},
        )
        return FullRecord(record=record, values=self.values.get_values(record_id))

    def delete_record(self, record_id: str) -> int:
        return self.records.delete(record_id)

    def check_notifications(self, owner_id: str) -> List[RecordChange]:
        return self.watermark.compute_changes(owner_id)

    def close(self) -> None:
        self.backend.close()


def _backend_factories(settings: Settings) -> Dict[str, Callable[[], StorageBackend]]:
    """Registry of available storage backends."""
    return {
        "memory": lambda: MemoryBackend(),
        "postgres": lambda: PostgresBackend.from_settings(settings),
    }


def available_backends() -> List[str]:
    """List available backend names."""
    return sorted(_backend_factories(get_settings()).keys())


def _resolve_backend(name: str, settings: Settings) -> StorageBackend:
    factories = _backend_factories(settings)
    if name not in factories:
        raise ValueError(f"Unknown storage backend '{name}'. Available: {', '.join(factories)}")
    return factories[name]()


def build_casebook(
    settings: Optional[Settings] = None,
    backend: Optional[StorageBackend] = None,
    clock: Clock = utc_now,
) -> Casebook:
    """
    Build a Casebook over the configured backend (STORAGE_BACKEND), or over an
    explicitly supplied one.
    """
    settings = settings or get_settings()
    backend = backend or _resolve_backend(settings.storage_backend, settings)
    log.info("Casebook ready", extra={"backend": backend.name, "app_env": settings.app_env})
    return Casebook(
        backend,
        retry=RetryPolicy.from_settings(settings),
        clock=clock,
        field_cache=FieldCache(),
    )


__all__ = [
    "Casebook",
    "available_backends",
    "build_casebook",
]
