from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from casebook import main
from casebook.domain.errors import TransientError
from casebook.service import Casebook

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_book(book: Casebook, monkeypatch: pytest.MonkeyPatch) -> Casebook:
    monkeypatch.setattr(main, "_casebook", lambda: book)
    monkeypatch.setattr(main, "configure_logging", lambda **kwargs: None)
    return book


def _invoke(*args: str):
    return runner.invoke(main.app, list(args))


def test_info_shows_backend() -> None:
    result = _invoke("info")
    assert result.exit_code == 0
    assert "backend=" in result.output


def test_init_db_skips_non_postgres(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    main.get_settings.cache_clear()
    try:
        result = _invoke("init-db")
    finally:
        main.get_settings.cache_clear()
    assert result.exit_code == 0
    assert "nothing to do" in result.output


def test_field_lifecycle(cli_book: Casebook) -> None:
    assert _invoke("field", "add", "Offence").exit_code == 0
    assert _invoke("field", "add", "Date Referred", "--type", "date").exit_code == 0
    referred = cli_book.fields.by_name()["Date Referred"]

    moved = _invoke("field", "move", referred.id, "up")
    listed = _invoke("field", "list")

    assert moved.exit_code == 0 and "Moved." in moved.output
    assert [f.name for f in cli_book.fields.list()] == ["Date Referred", "Offence"]
    assert "Custom Fields" in listed.output

    deleted = _invoke("field", "delete", referred.id)
    assert deleted.exit_code == 0
    assert [f.name for f in cli_book.fields.list()] == ["Offence"]


def test_record_create_update_show(cli_book: Casebook) -> None:
    cli_book.fields.create("Offence")

    created = _invoke("record", "create", "--owner", "alice", "-v", "Offence=Theft")
    assert created.exit_code == 0
    assert "Created record #1" in created.output
    record = cli_book.records.list_by_owner("alice")[0]

    updated = _invoke("record", "update", record.id, "--category", "PHQ", "-v", "Offence=")
    assert updated.exit_code == 0
    assert cli_book.records.get(record.id).category.value == "PHQ"
    assert cli_book.values.get_values(record.id) == {}

    shown = _invoke("record", "show", record.id)
    assert shown.exit_code == 0
    assert "Record #1 [PHQ] owner=alice" in shown.output


def test_value_set_and_get(cli_book: Casebook) -> None:
    field = cli_book.fields.create("Exhibits", "number")
    record = cli_book.create_record("alice").record

    assert _invoke("value", "set", record.id, "Exhibits", "4").exit_code == 0
    result = _invoke("value", "get", record.id)

    assert result.exit_code == 0
    assert "Exhibits=4" in result.output
    assert cli_book.values.get_values(record.id) == {field.id: "4"}


def test_validation_error_exits_with_code_1(cli_book: Casebook) -> None:
    cli_book.fields.create("Exhibits", "number")
    result = _invoke("record", "create", "-o", "alice", "-v", "Exhibits=many")
    assert result.exit_code == 1
    assert "expects a number" in result.output
    assert cli_book.records.list_all() == []


def test_unknown_field_name_exits_with_code_1() -> None:
    result = _invoke("record", "create", "-o", "alice", "-v", "Nope=1")
    assert result.exit_code == 1
    assert "Unknown field 'Nope'" in result.output


def test_not_found_exits_with_code_1() -> None:
    result = _invoke("record", "delete", "missing")
    assert result.exit_code == 1
    assert "Record 'missing' not found" in result.output


def test_transient_error_exits_with_code_2(cli_book: Casebook, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(owner_id=None):
        raise TransientError("statement timeout")

    monkeypatch.setattr(cli_book.backend, "list_records", _fail)

    result = _invoke("record", "list")

    assert result.exit_code == 2
    assert "try again" in result.output
    assert "statement timeout" not in result.output


def test_notify_check_reports_changes(cli_book: Casebook) -> None:
    assert _invoke("notify", "ack", "alice").exit_code == 0
    cli_book.create_record("alice")

    first = _invoke("notify", "check", "alice")
    second = _invoke("notify", "check", "alice")

    assert "Changed Records" in first.output
    assert "No changes" in second.output


def test_owner_commands(cli_book: Casebook) -> None:
    assert _invoke("owner", "add", "u1", "--username", "officer1", "--role", "admin").exit_code == 0
    result = _invoke("owner", "list")
    assert "officer1" in result.output
    assert cli_book.owners.get("u1").role.value == "admin"


def test_report_counts_categories(cli_book: Casebook) -> None:
    cli_book.create_record("alice", "PHQ")
    result = _invoke("report")
    assert result.exit_code == 0
    assert "Records by Category" in result.output


def test_export_then_import(cli_book: Casebook, tmp_path: Path) -> None:
    cli_book.fields.create("Offence")
    cli_book.create_record("alice", values={cli_book.fields.list()[0].id: "Fraud"})
    path = tmp_path / "records.csv"

    exported = _invoke("export", "--output", str(path), "--owner", "alice")
    imported = _invoke("import", str(path), "--owner", "bob")

    assert exported.exit_code == 0 and "Exported 1 records" in exported.output
    assert imported.exit_code == 0 and "Imported 1 records, 0 failed." in imported.output
    [copy] = cli_book.records.list_full("bob")
    assert list(copy.values.values()) == ["Fraud"]
