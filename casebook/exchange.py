"""
Record Exchange: flat-row export and import for the spreadsheet collaborator.

Exported rows carry the owner's username, the per-owner record number, the
category and one column per custom field in registry order. Importing creates
one record per row for a given owner; columns that do not name a field are
ignored and never create fields.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from casebook.components.attribute_store import coerce_cell, validate_value
from casebook.domain.errors import CasebookError, ValidationError
from casebook.domain.models import DEFAULT_CATEGORY, RESERVED_FIELD_NAMES, parse_category
from casebook.service import Casebook
from casebook.utils.logging import get_logger

log = get_logger(__name__)

FIXED_COLUMNS = RESERVED_FIELD_NAMES
USER_COLUMN, NUMBER_COLUMN, CATEGORY_COLUMN = FIXED_COLUMNS


@dataclass
class ImportResult:
    success: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def export_columns(book: Casebook) -> List[str]:
    return list(dict.fromkeys([*FIXED_COLUMNS, *(f.name for f in book.fields.list())]))


def export_rows(book: Casebook, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Flatten records into rows, one column per field in list order.

    Records are taken from one owner (sequence number descending) or from every
    owner (most recently created first). Missing values export as "".
    """
    fields = book.fields.list()
    usernames = book.owners.usernames()
    rows: List[Dict[str, Any]] = []
    for full in book.records.list_full(owner_id):
        record = full.record
        row: Dict[str, Any] = {
            USER_COLUMN: usernames.get(record.owner_id, record.owner_id),
            NUMBER_COLUMN: record.sequence_number,
            CATEGORY_COLUMN: record.category.value,
        }
        for f in fields:
            row.setdefault(f.name, full.values.get(f.id, ""))
        rows.append(row)
    log.info("[EXPORT]", extra={"owner_id": owner_id, "rows": len(rows), "fields": len(fields)})
    return rows


def _row_values(book: Casebook, row: Mapping[str, Any]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for name, field_def in book.fields.by_name().items():
        if name not in row:
            continue
        value = validate_value(field_def, coerce_cell(row[name]))
        if value:
            values[field_def.id] = value
    return values


def import_rows(book: Casebook, owner_id: str, rows: Iterable[Mapping[str, Any]]) -> ImportResult:
    """
    Create one record per row for `owner_id`.

    A row is validated completely before its record is created, so a failing
    row leaves nothing behind. Failures are collected with 1-based row numbers
    and do not stop the import.
    """
    result = ImportResult()
    for index, row in enumerate(rows, start=1):
        try:
            raw_category = coerce_cell(row.get(CATEGORY_COLUMN)).strip()
            category = parse_category(raw_category) if raw_category else DEFAULT_CATEGORY
            values = _row_values(book, row)
            book.create_record(owner_id, category, values)
        except CasebookError as exc:
            result.failed += 1
            result.errors.append(f"Row {index}: {exc}")
            log.warning("[IMPORT ROW FAILED]", extra={"row": index, "error": str(exc)})
        else:
            result.success += 1
    log.info(
        "[IMPORT]",
        extra={"owner_id": owner_id, "success": result.success, "failed": result.failed},
    )
    return result


def write_csv(path: Path, columns: List[str], rows: Iterable[Mapping[str, Any]]) -> int:
    """Write rows to a CSV file with a header; returns the number of rows written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
            count += 1
    return count


def read_csv(path: Path) -> List[Dict[str, str]]:
    if not path.exists():
        raise ValidationError(f"File not found: {path}")
    with path.open("r", newline="", encoding="utf-8-sig") as f:
        return list(csv.DictReader(f))


__all__ = [
    "CATEGORY_COLUMN",
    "FIXED_COLUMNS",
    "ImportResult",
    "NUMBER_COLUMN",
    "USER_COLUMN",
    "export_columns",
    "export_rows",
    "import_rows",
    "read_csv",
    "write_csv",
]
