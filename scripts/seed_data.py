"""
Seed data script for Casebook.

Deterministic pseudo-random owners and records with the standard field set,
emitted as an exchange CSV (the format `casebook import` reads) and optionally
loaded through the Casebook facade.
"""

from __future__ import annotations

import csv
import random
import sys
import tempfile
import time
from collections import defaultdict
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, List, Tuple

import typer

from casebook.config import get_settings
from casebook.domain.models import Category, FieldType, Role
from casebook.exchange import CATEGORY_COLUMN, NUMBER_COLUMN, USER_COLUMN, import_rows
from casebook.service import Casebook, build_casebook

app = typer.Typer(help="Generate synthetic case records (CSV) and optionally load them.")

SEED_FIELDS: List[Tuple[str, FieldType]] = [
    ("Enquiry Officer", FieldType.TEXT),
    ("OB Number", FieldType.TEXT),
    ("Offence", FieldType.TEXT),
    ("Date Referred", FieldType.DATE),
    ("Case Short Of", FieldType.TEXT),
]

_OFFENCES = ["Burglary", "Assault", "Theft", "Fraud", "Robbery", "Criminal damage"]
_SHORT_OF = ["", "Statements", "Exhibits", "Medical report", "Witness", "Suspect details"]
_OFFICERS = ["Sgt. Achieng", "Cpl. Mutua", "Insp. Wanjiru", "PC Otieno", "PC Kamau"]


def seed_columns() -> List[str]:
    return [USER_COLUMN, NUMBER_COLUMN, CATEGORY_COLUMN, *(name for name, _ in SEED_FIELDS)]


def _generate_rows_csv(csv_path: Path, rows: int, owners: int, seed: int) -> None:
    rng = random.Random(seed)
    usernames = [f"officer{i + 1}" for i in range(owners)]
    numbers: Dict[str, int] = defaultdict(int)
    start = date(2024, 1, 1)

    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(seed_columns())
        for _ in range(rows):
            user = rng.choice(usernames)
            numbers[user] += 1
            writer.writerow(
                [
                    user,
                    numbers[user],
                    rng.choice(list(Category)).value,
                    rng.choice(_OFFICERS),
                    f"OB/{rng.randint(1, 99):02d}/{rng.randint(1, 12):02d}/{rng.randint(2020, 2025)}",
                    rng.choice(_OFFENCES),
                    (start + timedelta(days=rng.randint(0, 365))).isoformat(),
                    rng.choice(_SHORT_OF),
                ]
            )


def _read_rows_by_user(csv_path: Path) -> Dict[str, List[Dict[str, str]]]:
    grouped: Dict[str, List[Dict[str, str]]] = defaultdict(list)
    with csv_path.open("r", newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            grouped[row[USER_COLUMN]].append(row)
    return grouped


def _ensure_fields(book: Casebook) -> int:
    existing = book.fields.by_name()
    created = 0
    for name, field_type in SEED_FIELDS:
        if name not in existing:
            book.fields.create(name, field_type, created_by="admin")
            created += 1
    return created


def load_csv(book: Casebook, csv_path: Path) -> Tuple[int, int]:
    """
    Register the admin and every owner in the file, create missing seed
    fields, then import each owner's rows. Returns (imported, failed).
    """
    book.owners.register("admin", "admin", Role.ADMIN)
    _ensure_fields(book)
    imported = failed = 0
    for username, rows in _read_rows_by_user(csv_path).items():
        book.owners.register(username, username, Role.USER)
        book.watermark.acknowledge(username)
        result = import_rows(book, username, rows)
        imported += result.success
        failed += result.failed
    return imported, failed


@app.command()
def main(
    rows: int = typer.Option(
        200,
        "--rows",
        "-r",
        help="Number of records to generate.",
    ),
    owners: int = typer.Option(
        5,
        "--owners",
        help="Number of distinct record owners.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional CSV output path (if omitted, a temp file will be used).",
    ),
    no_load: bool = typer.Option(
        False,
        "--no-load",
        help="Only generate CSV; skip loading into storage.",
    ),
) -> None:
    """
    Generate synthetic records and optionally load them into the configured backend.
    """
    start = time.perf_counter()
    if output:
        csv_path = output
        csv_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        tmpdir = Path(tempfile.mkdtemp(prefix="casebook_seed_"))
        csv_path = tmpdir / "records.csv"

    typer.echo(f"Generating {rows:,} records for {owners} owners -> {csv_path} (seed={seed})")
    _generate_rows_csv(csv_path, rows=rows, owners=owners, seed=seed)
    typer.echo(f"CSV generation completed in {time.perf_counter() - start:.2f}s")

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    settings = get_settings()
    typer.echo(f"Loading into backend '{settings.storage_backend}'...")
    book = build_casebook(settings)
    try:
        imported, failed = load_csv(book, csv_path)
    finally:
        book.close()
    typer.echo(
        f"Loaded {imported:,} records ({failed} failed) in {time.perf_counter() - start:.2f}s total."
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
