"""Tests for the command line."""

from decimal import Decimal

import pytest
from typer.testing import CliRunner

from rental_tax import cli
from rental_tax.cli import app, format_money
from rental_tax.models import TokenGrant, UserInfo

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep the CLI away from the real home directory."""
    monkeypatch.setenv("RENTAL_TAX_DATABASE_PATH", str(tmp_path / "cli" / "test.db"))
    monkeypatch.delenv("RENTAL_TAX_SPREADSHEET_ID", raising=False)
    monkeypatch.chdir(tmp_path)


def test_format_money():
    assert format_money(Decimal("1234.5"), use_color=False) == " R$ 1.234,50 "
    assert format_money(Decimal("-85.02"), use_color=False) == "(R$ 85,02)"


def test_calc():
    result = runner.invoke(app, ["calc", "9900", "--dependents", "2"])

    assert result.exit_code == 0
    assert "1.646,79" in result.output
    assert "27.5%" in result.output


def test_calc_rejects_non_numeric_income():
    result = runner.invoke(app, ["calc", "lots"])
    assert result.exit_code == 1
    assert "Error" in result.output


def test_months_requires_sign_in():
    result = runner.invoke(app, ["months"])
    assert result.exit_code == 1
    assert "Not signed in" in result.output


@pytest.fixture
def signed_in(coordinator, session, monkeypatch):
    """Route the commands to a coordinator backed by the in-memory store."""
    session.start(
        TokenGrant(token="token-1", expires_in=3600),
        UserInfo(email="owner@example.com"),
    )
    monkeypatch.setattr(cli, "build_coordinator", lambda settings, db: coordinator)
    return coordinator


def test_add_reservation_saves_to_spreadsheet(signed_in, store):
    result = runner.invoke(app, ["add-reservation", "2025-01-10", "2", "1000"])

    assert result.exit_code == 0
    assert "owner R$ 700,00" in result.output
    assert store.sheets["airbnb"] == [["2025-01-10", 2, 1000.0, 700.0, 300.0]]
    assert store.closed


def test_pay_writes_tax_rows(signed_in, store):
    store.sheets["airbnb"] = [["2025-01-10", 2, 1000, 700, 300]]

    result = runner.invoke(app, ["pay", "2025-01"])

    assert result.exit_code == 0
    assert "2025-01 marked as paid" in result.output
    assert store.sheets["taxes"] == [["2025-01", 700.0, 0.0, 0.075, 0.0, 700.0, True]]


def test_pay_twice_writes_nothing(signed_in, store):
    store.sheets["taxes"] = [["2025-01", 700, 0, 0.075, 0, 700, True]]

    result = runner.invoke(app, ["pay", "2025-01"])

    assert result.exit_code == 0
    assert "already paid" in result.output
    assert store.writes() == []


def test_set_dependents(signed_in, store):
    result = runner.invoke(app, ["set-dependents", "2"])

    assert result.exit_code == 0
    assert store.sheets["settings"][0] == ["dependents", "2"]


def test_add_expense_rejects_unknown_category(signed_in, store):
    result = runner.invoke(
        app, ["add-expense", "2025-01-01", "10", "--category", "Pizza"]
    )

    assert result.exit_code == 1
    assert "Unknown category" in result.output
    assert store.writes() == []
