"""Tracking of months whose tax has been filed and paid."""

from collections.abc import Iterable

from .dates import parse_month_key


class PaidMonthTracker:
    """
    Set of month keys the user marked as paid.

    Only explicit user action changes this set; recomputing tax summaries
    reads it but never resets it. Mark and unmark are idempotent and report
    whether anything changed, so callers can skip persisting no-ops.
    """

    def __init__(self, months: Iterable[str] = ()):
        self._months: set[str] = set()
        self.replace(months)

    def mark_paid(self, month: str) -> bool:
        """Mark a month as paid. Returns True if the set changed."""
        parse_month_key(month)
        if month in self._months:
            return False
        self._months.add(month)
        return True

    def mark_unpaid(self, month: str) -> bool:
        """Mark a month as unpaid. Returns True if the set changed."""
        if month not in self._months:
            return False
        self._months.discard(month)
        return True

    def is_paid(self, month: str) -> bool:
        return month in self._months

    def all_paid(self) -> frozenset[str]:
        return frozenset(self._months)

    def replace(self, months: Iterable[str]) -> None:
        """Replace the whole set (used when loading from the spreadsheet)."""
        new_months = set(months)
        for month in new_months:
            parse_month_key(month)
        self._months = new_months

    def __contains__(self, month: object) -> bool:
        return month in self._months

    def __len__(self) -> int:
        return len(self._months)
