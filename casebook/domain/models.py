"""
Domain models for Casebook.

Defines the fixed part of a record (owner, category, sequence number,
timestamps), the custom field definitions administrators manage, the sparse
attribute values keyed on (record, field), and the read-side shapes built from
them (full records, change notifications, category counts).
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Type, TypeVar

from pydantic import BaseModel, Field

from casebook.domain.errors import ValidationError

_FROZEN = {
    "frozen": True,
    "populate_by_name": True,
    "arbitrary_types_allowed": False,
}


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"


class Category(str, Enum):
    CASE_OB = "CASE OB"
    PHQ = "PHQ"


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"


class ChangeKind(str, Enum):
    NEW = "new"
    UPDATED = "updated"


DEFAULT_CATEGORY = Category.CASE_OB

# Fixed columns of the flat record export; custom fields may not use these names.
RESERVED_FIELD_NAMES = ("User", "Record #", "Category")

_E = TypeVar("_E", bound=Enum)


def _parse_enum(enum_cls: Type[_E], value: object, label: str) -> _E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(repr(member.value) for member in enum_cls)
        raise ValidationError(f"Unknown {label} {value!r}. Expected one of: {allowed}") from None


def parse_category(value: object) -> Category:
    """Coerce `value` to a Category or raise ValidationError."""
    return _parse_enum(Category, value, "category")


def parse_field_type(value: object) -> FieldType:
    """Coerce `value` to a FieldType or raise ValidationError."""
    if isinstance(value, str):
        value = value.lower()
    return _parse_enum(FieldType, value, "field type")


def parse_direction(value: object) -> Direction:
    """Coerce `value` to a Direction or raise ValidationError."""
    if isinstance(value, str):
        value = value.lower()
    return _parse_enum(Direction, value, "direction")


def parse_role(value: object) -> Role:
    """Coerce `value` to a Role or raise ValidationError."""
    return _parse_enum(Role, value, "role")


class FieldDefinition(BaseModel):
    """
    A custom attribute administrators can add to every record.
    """

    id: str = Field(..., description="Stable opaque identifier.")
    name: str = Field(..., description="Display label; uniqueness is not enforced.")
    type: FieldType = Field(FieldType.TEXT, description="Declared scalar type.")
    position: int = Field(..., description="Ordering key; gaps are allowed.")
    created_at: datetime = Field(..., description="Definition creation timestamp.")
    created_by: Optional[str] = Field(None, description="Owner id of the creating admin.")

    model_config = _FROZEN


class Record(BaseModel):
    """
    Representation of a single row in the `records` table.
    """

    id: str = Field(..., description="Stable opaque identifier.")
    owner_id: str = Field(..., description="Owner (caseworker) of the record.")
    category: Category = Field(..., description="Closed category enum.")
    sequence_number: int = Field(..., ge=1, description="Per-owner record number.")
    created_at: datetime = Field(..., description="Row creation timestamp.")
    updated_at: datetime = Field(..., description="Last mutation of the row or its values.")

    model_config = _FROZEN


class AttributeValue(BaseModel):
    """
    One custom value, keyed on the (record_id, field_id) natural key.
    """

    record_id: str
    field_id: str
    value: str

    model_config = _FROZEN


class Owner(BaseModel):
    """
    The slice of a user profile the core needs: display name, role and the
    notification watermark.
    """

    id: str
    username: str
    role: Role = Role.USER
    last_checked_at: Optional[datetime] = Field(
        None, description="Notification watermark; None means never checked."
    )

    model_config = _FROZEN


class FullRecord(BaseModel):
    """
    A record composed with its attribute values (field id -> value).
    """

    record: Record
    values: Dict[str, str] = Field(default_factory=dict)

    model_config = _FROZEN


class RecordChange(BaseModel):
    """
    One entry of a change notification.
    """

    record_id: str
    sequence_number: int
    kind: ChangeKind
    timestamp: datetime

    model_config = _FROZEN


class CategoryCount(BaseModel):
    """
    Read-side aggregation row: records per owner per category.
    """

    owner_id: str
    category: Category
    count: int = Field(0, ge=0)

    model_config = _FROZEN


__all__ = [
    "AttributeValue",
    "Category",
    "CategoryCount",
    "ChangeKind",
    "DEFAULT_CATEGORY",
    "RESERVED_FIELD_NAMES",
    "Direction",
    "FieldDefinition",
    "FieldType",
    "FullRecord",
    "Owner",
    "Record",
    "RecordChange",
    "Role",
    "parse_category",
    "parse_direction",
    "parse_field_type",
    "parse_role",
]
