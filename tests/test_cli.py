"""Tests for the command line interface."""

from datetime import date
from decimal import Decimal

import pytest
from typer.testing import CliRunner

from splitsettle.cli import app, format_money
from splitsettle.db import Database

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point settings at a temporary database."""
    path = tmp_path / "cli.db"
    monkeypatch.setenv("DATABASE_PATH", str(path))
    monkeypatch.setenv("CONVERSION_MODE", "off")
    return path


def test_format_money():
    assert format_money(Decimal("-85.02")) == "([red]85.02[/red])"
    assert "1,234.50" in format_money(Decimal("1234.5"), "USD")


def test_allocate_equal():
    result = runner.invoke(app, ["allocate", "100", "equal", "1", "2", "3"])

    assert result.exit_code == 0
    assert "33.34" in result.stdout
    assert "Split matches total" in result.stdout


def test_allocate_percentage_mismatch():
    result = runner.invoke(app, ["allocate", "100", "percentage", "1:60", "2:30"])

    assert result.exit_code == 0
    assert "expected 100" in result.stdout


def test_allocate_invalid_total():
    result = runner.invoke(app, ["allocate", "lots", "equal", "1"])

    assert result.exit_code == 1


def test_balances_without_members(db_path):
    result = runner.invoke(app, ["balances", "5"])

    assert result.exit_code == 0
    assert "Everyone is settled up" in result.stdout


def test_prune_rates(db_path):
    db = Database(db_path)
    db.upsert_rate("EUR", "USD", date(2000, 1, 1), Decimal("0.98"))
    db.close()

    result = runner.invoke(app, ["prune-rates", "--keep-days", "30"])

    assert result.exit_code == 0
    assert "Removed 1 cached rates" in result.stdout


def test_add_member(db_path):
    result = runner.invoke(app, ["add-member", "5", "1", "2"])

    assert result.exit_code == 0
    assert "Group 5 members: 1, 2" in result.stdout


def test_add_expense_then_balances(db_path):
    runner.invoke(app, ["add-member", "5", "1", "2", "3"])

    result = runner.invoke(
        app,
        ["add-expense", "5", "90", "1", "1", "2", "3", "--description", "Dinner"],
    )

    assert result.exit_code == 0
    assert "Recorded expense" in result.stdout

    result = runner.invoke(app, ["balances", "5"])

    assert result.exit_code == 0
    assert "Settlement Plan" in result.stdout
    assert "30.00" in result.stdout


def test_add_expense_rejects_mismatched_split(db_path):
    result = runner.invoke(
        app,
        ["add-expense", "5", "100", "1", "1:60", "2:30", "--method", "percentage"],
    )

    assert result.exit_code == 1
    assert "does not match" in result.stdout

    db = Database(db_path)
    assert db.list_expenses_for_group(5) == []
    db.close()
