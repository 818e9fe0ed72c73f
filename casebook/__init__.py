"""
Casebook - case records with administrator-defined custom fields.

Records have a fixed core (owner, category, per-owner record number,
timestamps) and an open-ended set of typed custom attributes stored as
entity-attribute-value rows, so administrators can add, remove and reorder
fields without a schema migration. Owners can ask which of their records
changed since they last looked.

Storage runs on PostgreSQL (psycopg 3) or in memory for tests and demos.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from casebook.config import Settings, get_settings
from casebook.domain.errors import CasebookError, NotFoundError, TransientError, ValidationError
from casebook.domain.models import (
    Category,
    FieldDefinition,
    FieldType,
    FullRecord,
    Owner,
    Record,
    RecordChange,
    Role,
)
from casebook.service import Casebook, available_backends, build_casebook
from casebook.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Facade
    "Casebook",
    "available_backends",
    "build_casebook",
    # Domain
    "Category",
    "FieldDefinition",
    "FieldType",
    "FullRecord",
    "Owner",
    "Record",
    "RecordChange",
    "Role",
    # Errors
    "CasebookError",
    "NotFoundError",
    "TransientError",
    "ValidationError",
    # Logging
    "configure_logging",
    "get_logger",
]
