"""RentalTax - Monthly rental income tax backed by a Google spreadsheet."""

__version__ = "0.1.0"

from .aggregator import MonthAggregator, build_expense, build_reservation
from .config import Settings, load_settings
from .db import Database
from .models import (
    AppSettings,
    Expense,
    MonthlyTaxSummary,
    Reservation,
    SyncPhase,
    SyncState,
    TaxBreakdown,
)
from .paid import PaidMonthTracker
from .sync import SyncCoordinator
from .taxes import BrazilianRentalTaxCalculator, get_calculator, register_calculator

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "AppSettings",
    "Expense",
    "MonthlyTaxSummary",
    "Reservation",
    "SyncPhase",
    "SyncState",
    "TaxBreakdown",
    "MonthAggregator",
    "build_expense",
    "build_reservation",
    "PaidMonthTracker",
    "SyncCoordinator",
    "BrazilianRentalTaxCalculator",
    "get_calculator",
    "register_calculator",
]
