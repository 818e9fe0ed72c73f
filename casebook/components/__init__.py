"""
Components package for Casebook.

Re-exports the storage components so downstream code can import from
`casebook.components` directly.
"""

from casebook.components.attribute_store import AttributeStore, coerce_cell, validate_value
from casebook.components.change_watermark import ChangeWatermark
from casebook.components.field_registry import FieldCache, FieldRegistry
from casebook.components.owner_directory import OwnerDirectory
from casebook.components.record_catalog import RecordCatalog

__all__ = [
    "AttributeStore",
    "ChangeWatermark",
    "FieldCache",
    "FieldRegistry",
    "OwnerDirectory",
    "RecordCatalog",
    "coerce_cell",
    "validate_value",
]
