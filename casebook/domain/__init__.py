"""
Domain package for Casebook.

Exports the entities and the error taxonomy used by every component.
Keep this package focused on data definitions and validation concerns.
"""

from casebook.domain.errors import (
    CasebookError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from casebook.domain.models import (
    AttributeValue,
    Category,
    CategoryCount,
    ChangeKind,
    Direction,
    FieldDefinition,
    FieldType,
    FullRecord,
    Owner,
    Record,
    RecordChange,
    Role,
)

__all__ = [
    "AttributeValue",
    "CasebookError",
    "Category",
    "CategoryCount",
    "ChangeKind",
    "Direction",
    "FieldDefinition",
    "FieldType",
    "FullRecord",
    "NotFoundError",
    "Owner",
    "Record",
    "RecordChange",
    "Role",
    "TransientError",
    "ValidationError",
]
