from __future__ import annotations

import sys
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Dict, Generator, List, Optional

import psycopg
import typer

from casebook.config import get_settings
from casebook.domain.errors import CasebookError, TransientError, ValidationError
from casebook.exchange import export_columns, export_rows, import_rows, read_csv, write_csv
from casebook.infrastructure.db_factory import get_sync_connection
from casebook.infrastructure.schema import bootstrap_schema
from casebook.reporter import (
    print_category_counts,
    print_changes,
    print_fields,
    print_owners,
    print_records,
)
from casebook.service import Casebook, available_backends, build_casebook
from casebook.utils.logging import configure_logging, get_logger

log = get_logger(__name__)

app = typer.Typer(help="Casebook CLI: case records with administrator-defined fields.")
field_app = typer.Typer(help="Manage custom field definitions.")
record_app = typer.Typer(help="Create, edit and inspect records.")
value_app = typer.Typer(help="Read and write attribute values on a record.")
notify_app = typer.Typer(help="Change notifications for record owners.")
owner_app = typer.Typer(help="Owner profiles.")
app.add_typer(field_app, name="field")
app.add_typer(record_app, name="record")
app.add_typer(value_app, name="value")
app.add_typer(notify_app, name="notify")
app.add_typer(owner_app, name="owner")


@lru_cache(maxsize=1)
def _casebook() -> Casebook:
    return build_casebook(get_settings())


@contextmanager
def _cli_errors() -> Generator[None, None, None]:
    try:
        yield
    except TransientError as exc:
        log.warning("Command failed on a transient storage error", extra={"error": str(exc)})
        typer.echo("Storage is temporarily unavailable. Please try again.", err=True)
        raise typer.Exit(code=2)
    except CasebookError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)


def _parse_values(book: Casebook, pairs: Optional[List[str]]) -> Dict[str, str]:
    """
    Turn `NAME=VALUE` options into a field id -> value mapping.

    NAME may be a field name or a field id. An empty VALUE clears the field.
    """
    if not pairs:
        return {}
    by_name = book.fields.by_name()
    by_id = {f.id: f for f in book.fields.list()}
    values: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValidationError(f"Expected NAME=VALUE, got '{pair}'")
        field = by_name.get(key) or by_id.get(key)
        if field is None:
            raise ValidationError(f"Unknown field '{key}'")
        values[field.id] = value
    return values


@app.callback()
def _setup() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"backend={settings.storage_backend} (available: {', '.join(available_backends())}) | "
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"statement_timeout={settings.db_statement_timeout_ms}ms "
        f"retries={settings.retry_attempts} env={settings.app_env}"
    )


@app.command("init-db")
def init_db() -> None:
    """
    Create the PostgreSQL tables and indexes (idempotent).
    """
    settings = get_settings()
    if settings.storage_backend != "postgres":
        typer.echo(f"Backend '{settings.storage_backend}' needs no schema; nothing to do.")
        return
    with _cli_errors():
        try:
            with get_sync_connection() as conn:
                bootstrap_schema(conn)
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            raise TransientError(f"Could not bootstrap schema: {exc}") from exc
    typer.echo("Schema ready.")


# ── Fields ───────────────────────────────────────────────────────────


@field_app.command("add")
def field_add(
    name: str = typer.Argument(..., help="Display label of the field."),
    field_type: str = typer.Option("text", "--type", "-t", help="text, number or date."),
    created_by: Optional[str] = typer.Option(None, "--by", help="Administrator owner id."),
) -> None:
    """Append a custom field after every existing one."""
    with _cli_errors():
        field = _casebook().fields.create(name, field_type, created_by=created_by)
    typer.echo(f"Created field '{field.name}' ({field.type.value}) id={field.id} position={field.position}")


@field_app.command("list")
def field_list() -> None:
    with _cli_errors():
        fields = _casebook().fields.list()
    print_fields(fields)


@field_app.command("move")
def field_move(
    field_id: str = typer.Argument(...),
    direction: str = typer.Argument(..., help="up or down."),
) -> None:
    """Swap a field with its neighbour in display order."""
    with _cli_errors():
        moved = _casebook().fields.move(field_id, direction)
    typer.echo("Moved." if moved else "Nothing to move.")


@field_app.command("delete")
def field_delete(field_id: str = typer.Argument(...)) -> None:
    """Delete a field and every value stored for it."""
    with _cli_errors():
        removed = _casebook().fields.delete(field_id)
    typer.echo(f"Deleted field {field_id} ({removed} values removed).")


# ── Records ──────────────────────────────────────────────────────────


@record_app.command("create")
def record_create(
    owner: str = typer.Option(..., "--owner", "-o", help="Owner id."),
    category: str = typer.Option("CASE OB", "--category", "-c"),
    value: Optional[List[str]] = typer.Option(None, "--value", "-v", help="NAME=VALUE, repeatable."),
) -> None:
    """Create a record numbered after the owner's latest one."""
    with _cli_errors():
        book = _casebook()
        full = book.create_record(owner, category, _parse_values(book, value))
    typer.echo(f"Created record #{full.record.sequence_number} id={full.record.id}")


@record_app.command("update")
def record_update(
    record_id: str = typer.Argument(...),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Reassign to this owner."),
    value: Optional[List[str]] = typer.Option(None, "--value", "-v", help="NAME=VALUE, repeatable."),
) -> None:
    """Edit a record's category, owner and values in one save."""
    with _cli_errors():
        book = _casebook()
        full = book.save_record(
            record_id, category=category, owner_id=owner, values=_parse_values(book, value)
        )
    typer.echo(f"Saved record #{full.record.sequence_number} (owner {full.record.owner_id})")


@record_app.command("delete")
def record_delete(record_id: str = typer.Argument(...)) -> None:
    with _cli_errors():
        removed = _casebook().delete_record(record_id)
    typer.echo(f"Deleted record {record_id} ({removed} values removed).")


@record_app.command("list")
def record_list(
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Only this owner's records."),
) -> None:
    with _cli_errors():
        book = _casebook()
        records = book.records.list_full(owner)
        fields = book.fields.list()
        usernames = book.owners.usernames()
    print_records(records, fields, usernames)


@record_app.command("show")
def record_show(record_id: str = typer.Argument(...)) -> None:
    with _cli_errors():
        book = _casebook()
        full = book.records.full_record(record_id)
        fields = book.fields.list()
    record = full.record
    typer.echo(f"Record #{record.sequence_number} [{record.category.value}] owner={record.owner_id}")
    typer.echo(f"  created={record.created_at.isoformat()} updated={record.updated_at.isoformat()}")
    for f in fields:
        typer.echo(f"  {f.name}: {full.values.get(f.id, '')}")


# ── Values ───────────────────────────────────────────────────────────


@value_app.command("set")
def value_set(
    record_id: str = typer.Argument(...),
    field: str = typer.Argument(..., help="Field name or id."),
    value: str = typer.Argument("", help="New value; empty clears the field."),
) -> None:
    with _cli_errors():
        book = _casebook()
        book.save_record(record_id, values=_parse_values(book, [f"{field}={value}"]))
    typer.echo("Cleared." if value == "" else "Saved.")


@value_app.command("get")
def value_get(record_id: str = typer.Argument(...)) -> None:
    with _cli_errors():
        book = _casebook()
        book.records.get(record_id)
        fields = book.fields.list()
        values = book.values.get_values_display(record_id, fields)
    for f in fields:
        typer.echo(f"{f.name}={values[f.id]}")


# ── Notifications ────────────────────────────────────────────────────


@notify_app.command("check")
def notify_check(owner: str = typer.Argument(..., help="Owner id.")) -> None:
    """Show records changed since the last check, then advance the watermark."""
    with _cli_errors():
        changes = _casebook().check_notifications(owner)
    print_changes(changes)


@notify_app.command("ack")
def notify_ack(owner: str = typer.Argument(..., help="Owner id.")) -> None:
    """Start (or move forward) change tracking for an owner."""
    with _cli_errors():
        at = _casebook().watermark.acknowledge(owner)
    typer.echo(f"Watermark set to {at.isoformat()}")


# ── Owners ───────────────────────────────────────────────────────────


@owner_app.command("add")
def owner_add(
    owner_id: str = typer.Argument(...),
    username: Optional[str] = typer.Option(None, "--username", "-u"),
    role: str = typer.Option("user", "--role", "-r", help="admin or user."),
) -> None:
    with _cli_errors():
        owner = _casebook().owners.register(owner_id, username, role)
    typer.echo(f"Registered {owner.username} ({owner.role.value}) id={owner.id}")


@owner_app.command("list")
def owner_list() -> None:
    with _cli_errors():
        owners = _casebook().owners.list()
    print_owners(owners)


# ── Reporting and exchange ───────────────────────────────────────────


@app.command()
def report() -> None:
    """
    Records per owner per category.
    """
    with _cli_errors():
        book = _casebook()
        counts = book.records.category_counts()
        usernames = book.owners.usernames()
    print_category_counts(counts, usernames)


@app.command()
def export(
    output: Path = typer.Option(Path("records.csv"), "--output", "-o", help="CSV file to write."),
    owner: Optional[str] = typer.Option(None, "--owner", help="Only this owner's records."),
) -> None:
    """
    Export records as a flat CSV, one column per custom field.
    """
    with _cli_errors():
        book = _casebook()
        written = write_csv(output, export_columns(book), export_rows(book, owner))
    typer.echo(f"Exported {written} records to {output}")


@app.command("import")
def import_(
    source: Path = typer.Argument(..., help="CSV file to read."),
    owner: str = typer.Option(..., "--owner", "-o", help="Owner of the imported records."),
) -> None:
    """
    Import records from a CSV; unknown columns are ignored.
    """
    with _cli_errors():
        result = import_rows(_casebook(), owner, read_csv(source))
    typer.echo(f"Imported {result.success} records, {result.failed} failed.")
    for error in result.errors:
        typer.echo(f"  {error}", err=True)
    if result.failed and not result.success:
        raise typer.Exit(code=1)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
