"""Monthly aggregation of reservations and expenses into tax summaries."""

import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Protocol, TypeVar

import pydantic

from .dates import format_month_key, month_key, month_name, to_local_date
from .exceptions import ValidationError
from .models import (
    AppSettings,
    Expense,
    ExpenseCategory,
    MonthlyTaxSummary,
    MonthProfit,
    Reservation,
    YearOverYearPoint,
)
from .paid import PaidMonthTracker
from .taxes import ZERO, TaxCalculator, get_calculator, to_cents

logger = logging.getLogger(__name__)

# Occupancy uses a fixed 30-day month rather than the calendar length
OCCUPANCY_DAYS = 30


class Dated(Protocol):
    date: date


D = TypeVar("D", bound=Dated)


# ============================================================================
# Record builders (user input is validated here, before the engine sees it)
# ============================================================================


def parse_amount(value: object, field: str = "amount") -> Decimal:
    """
    Parse user input into a cent-rounded Decimal.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number, got {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}") from None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number, got {value!r}")
    return to_cents(amount)


def build_reservation(
    check_in: date | datetime,
    nights: int,
    total: object,
    settings: AppSettings,
    reservation_id: str | None = None,
) -> Reservation:
    """
    Create a reservation, splitting the total with the current settings.

    The owner share is rounded half-up to the cent and the admin fee takes
    the remainder, so both always add up to the total. The split is frozen
    into the reservation; later settings changes do not touch it.

    Raises:
        ValidationError: If nights is not positive or total is not a number
    """
    amount = parse_amount(total, "total")
    if amount < 0:
        raise ValidationError(f"total must not be negative, got {amount}")

    owner_amount = to_cents(amount * settings.owner_split)
    try:
        return Reservation(
            id=reservation_id or f"reservation-{uuid.uuid4().hex[:12]}",
            date=to_local_date(check_in),
            nights=nights,
            total=amount,
            owner_amount=owner_amount,
            admin_fee=amount - owner_amount,
        )
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid reservation: {e}") from e


def build_expense(
    expense_date: date | datetime,
    amount: object,
    category: ExpenseCategory | None = None,
    notes: str | None = None,
    expense_id: str | None = None,
) -> Expense:
    """
    Create an expense from user input.

    Raises:
        ValidationError: If amount is not a number or category is unknown
    """
    value = parse_amount(amount)
    try:
        return Expense(
            id=expense_id or f"expense-{uuid.uuid4().hex[:12]}",
            date=to_local_date(expense_date),
            amount=value,
            category=category,
            notes=notes or None,
        )
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid expense: {e}") from e


# ============================================================================
# Grouping helpers
# ============================================================================


def group_by_month(records: Iterable[D]) -> dict[str, list[D]]:
    """Group dated records by their local-calendar month key."""
    grouped: dict[str, list[D]] = defaultdict(list)
    for record in records:
        grouped[format_month_key(record.date)].append(record)
    return dict(grouped)


def all_months(
    reservations: Iterable[Reservation], expenses: Iterable[Expense]
) -> list[str]:
    """Month keys that have at least one record, most recent first."""
    months = {format_month_key(r.date) for r in reservations}
    months.update(format_month_key(e.date) for e in expenses)
    return sorted(months, reverse=True)


def available_years(
    reservations: Iterable[Reservation], expenses: Iterable[Expense]
) -> list[int]:
    """Calendar years that have data, most recent first."""
    years = {to_local_date(r.date).year for r in reservations}
    years.update(to_local_date(e.date).year for e in expenses)
    return sorted(years, reverse=True)


def occupancy_rate(reservations: Iterable[Reservation]) -> int:
    """
    Occupancy percentage of a month's reservations.

    Always divides by a 30-day month, so long months can exceed what the
    calendar allows and February reads low.
    """
    nights = sum(r.nights for r in reservations)
    rate = Decimal(nights) / OCCUPANCY_DAYS * 100
    return int(rate.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def most_recent_unpaid_month(
    months: Sequence[str],
    paid: PaidMonthTracker | Iterable[str],
    today: date | None = None,
) -> str | None:
    """
    Most recent past month with data that is not yet paid.

    The current and future months are skipped since their tax is not due yet.

    Args:
        months: Month keys with data, most recent first
        paid: Paid months
        today: Reference day (defaults to the local current date)
    """
    current = format_month_key(today or date.today())
    paid_set = paid.all_paid() if isinstance(paid, PaidMonthTracker) else set(paid)
    for month in sorted(months, reverse=True):
        if month < current and month not in paid_set:
            return month
    return None


def format_currency(value: Decimal) -> str:
    """Format an amount the Brazilian way: 1.234,56"""
    text = f"{to_cents(value):,.2f}"
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def format_reservations_for_filing(reservations: Iterable[Reservation]) -> str:
    """One line per reservation, as typed into the monthly tax filing form."""
    lines = []
    for r in sorted(reservations, key=lambda x: x.date):
        day = to_local_date(r.date)
        lines.append(
            f"{day.day:02d}/{day.month:02d} - {r.nights} diárias = "
            f"R$ {format_currency(r.owner_amount)}"
        )
    return "\n".join(lines)


# ============================================================================
# Aggregator
# ============================================================================


class MonthAggregator:
    """Turns reservations and expenses into monthly tax summaries."""

    def __init__(self, calculator: TaxCalculator | None = None):
        self.calculator = calculator or get_calculator()

    def summarize(
        self,
        month: str,
        reservations: Iterable[Reservation],
        expenses: Iterable[Expense],
        dependents: int,
        is_paid: bool = False,
    ) -> MonthlyTaxSummary:
        """
        Compute the tax summary for one month.

        The caller passes the records of that month only. Liquid income may
        be negative; the loss is reported as negative profit, never masked.
        """
        total_income = sum((r.owner_amount for r in reservations), ZERO)
        total_deductions = sum((e.amount for e in expenses), ZERO)
        liquid_income = total_income - total_deductions

        breakdown = self.calculator.calculate_tax(liquid_income, dependents)

        return MonthlyTaxSummary(
            month=month,
            total_income=total_income,
            total_deductions=total_deductions,
            liquid_income=liquid_income,
            deduction=breakdown.deduction,
            taxable_income=breakdown.taxable_income,
            tax_rate=breakdown.tax_rate,
            tax_owed=breakdown.tax_owed,
            profit=liquid_income - breakdown.tax_owed,
            is_paid=is_paid,
        )

    def summaries(
        self,
        reservations: Sequence[Reservation],
        expenses: Sequence[Expense],
        dependents: int,
        paid: PaidMonthTracker | None = None,
        months: Iterable[str] | None = None,
    ) -> list[MonthlyTaxSummary]:
        """
        Summaries for every month in the data, most recent first.

        Args:
            reservations: All reservations
            expenses: All expenses
            dependents: Number of dependents
            paid: Paid-month tracker; is_paid is read from it
            months: Explicit month keys to summarize instead of the data months
        """
        by_month_r = group_by_month(reservations)
        by_month_e = group_by_month(expenses)
        keys = (
            sorted(set(months), reverse=True)
            if months is not None
            else all_months(reservations, expenses)
        )
        return [
            self.summarize(
                month,
                by_month_r.get(month, []),
                by_month_e.get(month, []),
                dependents,
                is_paid=paid.is_paid(month) if paid is not None else False,
            )
            for month in keys
        ]

    def accumulated_profit_by_year(
        self,
        reservations: Sequence[Reservation],
        expenses: Sequence[Expense],
        dependents: int,
    ) -> dict[int, list[MonthProfit]]:
        """
        Running profit per calendar year, one point per month (Jan..Dec).

        Months without records contribute zero profit to the running total.
        Years are ordered most recent first.
        """
        by_month_r = group_by_month(reservations)
        by_month_e = group_by_month(expenses)

        series: dict[int, list[MonthProfit]] = {}
        for year in available_years(reservations, expenses):
            accumulated = ZERO
            points = []
            for month in range(1, 13):
                key = month_key(year, month)
                summary = self.summarize(
                    key, by_month_r.get(key, []), by_month_e.get(key, []), dependents
                )
                accumulated += summary.profit
                points.append(
                    MonthProfit(
                        month=month,
                        month_name=month_name(month),
                        profit=summary.profit,
                        accumulated_profit=accumulated,
                    )
                )
            series[year] = points

        logger.debug(f"Computed accumulated profit for {len(series)} year(s)")
        return series

    def year_over_year(
        self,
        reservations: Sequence[Reservation],
        expenses: Sequence[Expense],
        dependents: int,
    ) -> list[YearOverYearPoint]:
        """Chart rows: one per month, with the accumulated profit of each year."""
        series = self.accumulated_profit_by_year(reservations, expenses, dependents)
        if not series:
            return []

        return [
            YearOverYearPoint(
                month=month,
                month_name=month_name(month),
                accumulated={
                    year: points[month - 1].accumulated_profit
                    for year, points in series.items()
                },
            )
            for month in range(1, 13)
        ]
