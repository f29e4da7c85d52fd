"""Typed access to the spreadsheet's four sheets.

Every read tolerates native cell types (numbers, booleans, serial dates) as
well as plain strings. A row that cannot be parsed is skipped on its own;
the rest of the sheet is still loaded.

Writes replace a sheet's data wholesale: the data rows are cleared, then the
full local collection is written. There is no version check, so edits made
meanwhile by another device are overwritten (last writer wins).
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar

import pydantic

from .clients.sheets import RemoteTabularStore, Row
from .dates import format_month_key, parse_cell_date, to_sheet_date
from .exceptions import MalformedRowError
from .models import (
    EXPENSE_CATEGORIES,
    AppSettings,
    Collection,
    Expense,
    MonthlyTaxSummary,
    Reservation,
)
from .taxes import to_cents

logger = logging.getLogger(__name__)

T = TypeVar("T")

COLUMNS: dict[Collection, list[str]] = {
    Collection.SETTINGS: ["key", "value"],
    Collection.RESERVATIONS: ["date", "nights", "total", "income", "admin_fee"],
    Collection.EXPENSES: ["date", "total", "category", "notes"],
    Collection.TAXES: [
        "date",
        "income",
        "deductions",
        "tax_rate",
        "tax_owed",
        "profit",
        "is_paid",
    ],
}

_TRUE_STRINGS = {"true", "1", "yes", "y", "sim", "x"}
_FALSE_STRINGS = {"false", "0", "no", "n", "não", "nao", ""}


@dataclass(frozen=True)
class SheetSchema:
    """Sheet titles; the defaults match spreadsheets created by earlier versions."""

    settings: str = "settings"
    reservations: str = "airbnb"
    expenses: str = "airbnb_expenses"
    taxes: str = "taxes"

    def name_for(self, collection: Collection) -> str:
        names = {
            Collection.SETTINGS: self.settings,
            Collection.RESERVATIONS: self.reservations,
            Collection.EXPENSES: self.expenses,
            Collection.TAXES: self.taxes,
        }
        return names[collection]


def default_settings_rows(settings: AppSettings | None = None) -> list[Row]:
    settings = settings or AppSettings()
    return [
        ["dependents", str(settings.dependents)],
        ["owner_split", f"{settings.owner_split:.2f}"],
        ["admin_split", f"{settings.admin_split:.2f}"],
    ]


# ============================================================================
# Cell parsing
# ============================================================================


def cell(row: Row, index: int) -> Any:
    """Cell value, or None when the row is shorter (Sheets trims empty tails)."""
    return row[index] if index < len(row) else None


def parse_cell_decimal(value: Any) -> Decimal:
    """Parse a money cell. Accepts numbers and strings with a dot or comma decimal."""
    if value is None or isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, (int, float)):
        text = str(value)
    else:
        text = str(value).strip()
        if "," in text and "." not in text:
            text = text.replace(",", ".")
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}") from None
    if not amount.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return amount


def parse_cell_int(value: Any) -> int:
    """Parse an integer cell; integral floats such as 3.0 are accepted."""
    amount = parse_cell_decimal(value)
    if amount != amount.to_integral_value():
        raise ValueError(f"Not an integer: {value!r}")
    return int(amount)


def parse_cell_bool(value: Any) -> bool:
    """Parse a checkbox or text boolean cell. Empty cells are False."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def _parse_rows(
    sheet: str, rows: list[Row], parse: Callable[[int, Row], T]
) -> list[T]:
    """Parse each row, skipping (and logging) the malformed ones."""
    parsed = []
    for index, row in enumerate(rows):
        if not any(c not in (None, "") for c in row):
            continue
        try:
            parsed.append(parse(index, row))
        except MalformedRowError as e:
            logger.warning(f"Skipping row: {e}")
    if len(parsed) != len(rows):
        logger.info(f"Loaded {len(parsed)} of {len(rows)} rows from '{sheet}'")
    return parsed


def _malformed(sheet: str, index: int, error: Exception) -> MalformedRowError:
    # +2: one for the header row, one because sheet rows are 1-based
    return MalformedRowError(sheet, index + 2, str(error))


# ============================================================================
# Repository
# ============================================================================


class SheetRepository:
    """Reads and writes the ledger collections through a remote tabular store."""

    def __init__(self, store: RemoteTabularStore, schema: SheetSchema | None = None):
        self.store = store
        self.schema = schema or SheetSchema()

    async def initialize(self) -> list[str]:
        """
        Create any missing sheet with its header row.

        A newly created settings sheet also gets the default settings rows.

        Returns:
            Titles of the sheets that were created
        """
        created = []
        for collection, columns in COLUMNS.items():
            name = self.schema.name_for(collection)
            if await self.store.exists(name):
                continue
            await self.store.create(name, columns)
            if collection is Collection.SETTINGS:
                await self.store.write_range(name, default_settings_rows())
            created.append(name)

        if created:
            logger.info(f"Initialized sheets: {', '.join(created)}")
        return created

    async def _replace(self, collection: Collection, rows: list[Row]) -> None:
        name = self.schema.name_for(collection)
        await self.store.clear_range(name)
        await self.store.write_range(name, rows)
        logger.info(f"Saved {len(rows)} rows to '{name}'")

    # ------------------------------------------------------------------ settings

    async def read_settings(self) -> AppSettings:
        """Read settings, falling back to defaults for missing or bad values."""
        name = self.schema.settings
        rows = await self.store.read_range(name)
        values: dict[str, Any] = {}

        for row in rows:
            key = str(cell(row, 0) or "").strip()
            raw = cell(row, 1)
            try:
                if key == "dependents":
                    values["dependents"] = parse_cell_int(raw)
                elif key == "owner_split":
                    values["owner_split"] = parse_cell_decimal(raw)
                elif key == "admin_split":
                    values["admin_split"] = parse_cell_decimal(raw)
            except ValueError as e:
                logger.warning(f"Ignoring setting '{key}' in '{name}': {e}")

        try:
            return AppSettings(**values)
        except pydantic.ValidationError as e:
            logger.warning(f"Invalid settings in '{name}', using defaults: {e}")
            return AppSettings()

    async def write_settings(self, settings: AppSettings) -> None:
        await self._replace(Collection.SETTINGS, default_settings_rows(settings))

    # -------------------------------------------------------------- reservations

    def _parse_reservation(self, index: int, row: Row) -> Reservation:
        sheet = self.schema.reservations
        try:
            check_in = parse_cell_date(cell(row, 0))
            nights = parse_cell_int(cell(row, 1))
            total = to_cents(parse_cell_decimal(cell(row, 2)))
            owner_amount = to_cents(parse_cell_decimal(cell(row, 3)))
            raw_fee = cell(row, 4)
            if raw_fee not in (None, ""):
                parse_cell_decimal(raw_fee)
            # Older rows hold unrounded floats; the fee is whatever the owner
            # amount leaves of the total once both are in cents.
            admin_fee = total - owner_amount
            return Reservation(
                id=f"reservation-{index}",
                date=check_in,
                nights=nights,
                total=total,
                owner_amount=owner_amount,
                admin_fee=admin_fee,
            )
        except (ValueError, pydantic.ValidationError) as e:
            raise _malformed(sheet, index, e) from e

    async def read_reservations(self) -> list[Reservation]:
        rows = await self.store.read_range(self.schema.reservations)
        return _parse_rows(self.schema.reservations, rows, self._parse_reservation)

    async def write_reservations(self, reservations: Iterable[Reservation]) -> None:
        rows: list[Row] = [
            [
                to_sheet_date(r.date),
                r.nights,
                float(r.total),
                float(r.owner_amount),
                float(r.admin_fee),
            ]
            for r in sorted(reservations, key=lambda x: x.date)
        ]
        await self._replace(Collection.RESERVATIONS, rows)

    # ------------------------------------------------------------------ expenses

    def _parse_expense(self, index: int, row: Row) -> Expense:
        sheet = self.schema.expenses
        try:
            expense_date = parse_cell_date(cell(row, 0))
            amount = to_cents(parse_cell_decimal(cell(row, 1)))
        except ValueError as e:
            raise _malformed(sheet, index, e) from e

        raw_category = cell(row, 2)
        category = str(raw_category).strip() if raw_category not in (None, "") else None
        if category is not None and category not in EXPENSE_CATEGORIES:
            logger.debug(f"Unknown expense category {category!r} in '{sheet}'")
            category = None

        raw_notes = cell(row, 3)
        notes = str(raw_notes) if raw_notes not in (None, "") else None

        return Expense(
            id=f"expense-{index}",
            date=expense_date,
            amount=amount,
            category=category,
            notes=notes,
        )

    async def read_expenses(self) -> list[Expense]:
        rows = await self.store.read_range(self.schema.expenses)
        return _parse_rows(self.schema.expenses, rows, self._parse_expense)

    async def write_expenses(self, expenses: Iterable[Expense]) -> None:
        rows: list[Row] = [
            [to_sheet_date(e.date), float(e.amount), e.category or "", e.notes or ""]
            for e in sorted(expenses, key=lambda x: x.date)
        ]
        await self._replace(Collection.EXPENSES, rows)

    # --------------------------------------------------------------------- taxes

    def _parse_paid_flag(self, index: int, row: Row) -> tuple[str, bool]:
        try:
            month = format_month_key(parse_cell_date(cell(row, 0)))
            return month, parse_cell_bool(cell(row, 6))
        except ValueError as e:
            raise _malformed(self.schema.taxes, index, e) from e

    async def read_paid_months(self) -> set[str]:
        """Months flagged as paid in the taxes sheet."""
        rows = await self.store.read_range(self.schema.taxes)
        flags = _parse_rows(self.schema.taxes, rows, self._parse_paid_flag)
        return {month for month, paid in flags if paid}

    async def write_tax_rows(self, summaries: Iterable[MonthlyTaxSummary]) -> None:
        rows: list[Row] = [
            [
                s.month,
                float(s.total_income),
                float(s.total_deductions),
                float(s.tax_rate),
                float(s.tax_owed),
                float(s.profit),
                s.is_paid,
            ]
            for s in sorted(summaries, key=lambda x: x.month)
        ]
        await self._replace(Collection.TAXES, rows)
