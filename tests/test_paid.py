"""Tests for PaidMonthTracker."""

import pytest

from rental_tax.paid import PaidMonthTracker


def test_mark_paid_is_idempotent():
    tracker = PaidMonthTracker()

    assert tracker.mark_paid("2025-03") is True
    assert tracker.mark_paid("2025-03") is False
    assert tracker.all_paid() == frozenset({"2025-03"})
    assert len(tracker) == 1


def test_mark_then_unmark_restores():
    tracker = PaidMonthTracker(["2025-01"])
    before = tracker.all_paid()

    tracker.mark_paid("2025-02")
    assert tracker.mark_unpaid("2025-02") is True

    assert tracker.all_paid() == before


def test_unmark_unknown_month_is_a_no_op():
    tracker = PaidMonthTracker()
    assert tracker.mark_unpaid("2025-02") is False


def test_is_paid_and_contains():
    tracker = PaidMonthTracker(["2024-12"])
    assert tracker.is_paid("2024-12")
    assert "2024-12" in tracker
    assert not tracker.is_paid("2025-01")


def test_rejects_invalid_month_keys():
    tracker = PaidMonthTracker()
    with pytest.raises(ValueError):
        tracker.mark_paid("2025-3")
    with pytest.raises(ValueError):
        tracker.replace(["2025-01", "garbage"])


def test_replace_swaps_whole_set():
    tracker = PaidMonthTracker(["2024-01", "2024-02"])
    tracker.replace(["2025-05"])
    assert tracker.all_paid() == frozenset({"2025-05"})


def test_all_paid_is_a_snapshot():
    tracker = PaidMonthTracker(["2024-01"])
    snapshot = tracker.all_paid()
    tracker.mark_paid("2024-02")
    assert snapshot == frozenset({"2024-01"})
