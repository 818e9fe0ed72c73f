from __future__ import annotations

from typing import Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from casebook.domain.models import (
    CategoryCount,
    ChangeKind,
    FieldDefinition,
    FullRecord,
    Owner,
    RecordChange,
)


def _console(console: Optional[Console]) -> Console:
    return console or Console()


def print_fields(fields: List[FieldDefinition], console: Optional[Console] = None) -> None:
    """Render field definitions in display order."""
    console = _console(console)
    if not fields:
        console.print("[yellow]No custom fields defined.[/yellow]")
        return

    table = Table(title="Custom Fields", box=box.ROUNDED)
    table.add_column("Position", justify="right", style="magenta")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Type", style="green")
    table.add_column("ID", style="dim")
    for f in fields:
        table.add_row(str(f.position), f.name, f.type.value, f.id)
    console.print(table)


def print_records(
    records: List[FullRecord],
    fields: List[FieldDefinition],
    usernames: Optional[Dict[str, str]] = None,
    console: Optional[Console] = None,
) -> None:
    """
    Render records with one column per custom field.

    Fields are shown in registry order; unset values render as blank cells.
    """
    console = _console(console)
    if not records:
        console.print("[yellow]No records to display.[/yellow]")
        return

    usernames = usernames or {}
    table = Table(title="Records", box=box.ROUNDED)
    table.add_column("Record #", justify="right", style="magenta")
    table.add_column("Owner", style="cyan", no_wrap=True)
    table.add_column("Category", style="blue")
    for f in fields:
        table.add_column(f.name)
    table.add_column("Updated", style="dim")
    table.add_column("ID", style="dim")

    for full in records:
        record = full.record
        table.add_row(
            str(record.sequence_number),
            usernames.get(record.owner_id, record.owner_id),
            record.category.value,
            *(full.values.get(f.id, "") for f in fields),
            record.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.id,
        )
    console.print(table)


def print_changes(changes: List[RecordChange], console: Optional[Console] = None) -> None:
    console = _console(console)
    if not changes:
        console.print("[green]No changes since your last check.[/green]")
        return

    table = Table(title="Changed Records", box=box.ROUNDED, caption="Most recently updated first")
    table.add_column("Record #", justify="right", style="magenta")
    table.add_column("Change", no_wrap=True)
    table.add_column("When", style="dim")
    for change in changes:
        kind = (
            "[bold green]new[/bold green]"
            if change.kind is ChangeKind.NEW
            else "[yellow]updated[/yellow]"
        )
        table.add_row(
            str(change.sequence_number), kind, change.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        )
    console.print(table)


def print_category_counts(
    counts: List[CategoryCount],
    usernames: Optional[Dict[str, str]] = None,
    console: Optional[Console] = None,
) -> None:
    """Render records per owner per category, one row per owner."""
    console = _console(console)
    if not counts:
        console.print("[yellow]No records to report.[/yellow]")
        return

    usernames = usernames or {}
    categories: List[str] = list(dict.fromkeys(c.category.value for c in counts))
    per_owner: Dict[str, Dict[str, int]] = {}
    for c in counts:
        per_owner.setdefault(c.owner_id, {})[c.category.value] = c.count

    table = Table(title="Records by Category", box=box.ROUNDED)
    table.add_column("Owner", style="cyan", no_wrap=True)
    for category in categories:
        table.add_column(category, justify="right", style="green")
    table.add_column("Total", justify="right", style="bold green")
    for owner_id, row in per_owner.items():
        table.add_row(
            usernames.get(owner_id, owner_id),
            *(f"{row.get(category, 0):,}" for category in categories),
            f"{sum(row.values()):,}",
        )
    console.print(table)


def print_owners(owners: List[Owner], console: Optional[Console] = None) -> None:
    console = _console(console)
    if not owners:
        console.print("[yellow]No owners registered.[/yellow]")
        return

    table = Table(title="Owners", box=box.ROUNDED)
    table.add_column("ID", style="dim")
    table.add_column("Username", style="cyan")
    table.add_column("Role", style="blue")
    table.add_column("Last Checked", style="dim")
    for owner in owners:
        checked = (
            owner.last_checked_at.strftime("%Y-%m-%d %H:%M:%S")
            if owner.last_checked_at
            else "never"
        )
        table.add_row(owner.id, owner.username, owner.role.value, checked)
    console.print(table)
