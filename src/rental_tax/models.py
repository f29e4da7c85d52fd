"""Pydantic domain models for RentalTax."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

Money = Decimal

ExpenseCategory = Literal[
    "IPTU", "Condomínio", "Luz", "Internet", "Gas", "Manutenção"
]
EXPENSE_CATEGORIES: tuple[str, ...] = (
    "IPTU",
    "Condomínio",
    "Luz",
    "Internet",
    "Gas",
    "Manutenção",
)

SPLIT_TOLERANCE = Decimal("0.0001")

# ============================================================================
# Ledger Models
# ============================================================================


class Reservation(BaseModel):
    """A rental reservation.

    owner_amount and admin_fee are derived from the split ratio when the
    reservation is created and never recomputed afterwards.
    """

    id: str
    date: date  # check-in day
    nights: int = Field(gt=0)
    total: Money
    owner_amount: Money
    admin_fee: Money

    @model_validator(mode="after")
    def _check_split(self) -> "Reservation":
        if self.owner_amount + self.admin_fee != self.total:
            raise ValueError(
                f"owner_amount ({self.owner_amount}) + admin_fee "
                f"({self.admin_fee}) must equal total ({self.total})"
            )
        return self


class Expense(BaseModel):
    """A deductible expense, conventionally dated on the 1st of its month."""

    id: str
    date: date
    amount: Money
    category: ExpenseCategory | None = None
    notes: str | None = None


class AppSettings(BaseModel):
    """User settings stored in the spreadsheet's settings sheet."""

    dependents: int = Field(default=0, ge=0)
    owner_split: Decimal = Field(default=Decimal("0.70"), ge=0, le=1)
    admin_split: Decimal = Field(default=Decimal("0.30"), ge=0, le=1)

    @model_validator(mode="after")
    def _check_splits(self) -> "AppSettings":
        if abs(self.owner_split + self.admin_split - 1) > SPLIT_TOLERANCE:
            raise ValueError(
                f"owner_split ({self.owner_split}) and admin_split "
                f"({self.admin_split}) must sum to 1"
            )
        return self


# ============================================================================
# Tax Models
# ============================================================================


class TaxBracket(BaseModel):
    """One progressive bracket. A ceiling of None means no upper bound."""

    ceiling: Decimal | None
    rate: Decimal
    deduction: Money


class TaxBreakdown(BaseModel):
    """Result of a tax calculation for one month."""

    deduction: Money
    taxable_income: Money
    tax_rate: Decimal
    tax_owed: Money


class MonthlyTaxSummary(BaseModel):
    """Derived monthly view. Recomputed on demand, never hand-edited."""

    month: str  # YYYY-MM
    total_income: Money
    total_deductions: Money
    liquid_income: Money
    deduction: Money
    taxable_income: Money
    tax_rate: Decimal
    tax_owed: Money
    profit: Money
    is_paid: bool = False


class MonthProfit(BaseModel):
    """Profit of one calendar month and the running total for its year."""

    month: int = Field(ge=1, le=12)
    month_name: str
    profit: Money
    accumulated_profit: Money


class YearOverYearPoint(BaseModel):
    """Accumulated profit of one month across every year present in the data."""

    month: int = Field(ge=1, le=12)
    month_name: str
    accumulated: dict[int, Money] = Field(default_factory=dict)


# ============================================================================
# Auth / Sync Models
# ============================================================================


class TokenGrant(BaseModel):
    """Access token issued by the identity provider."""

    token: str
    expires_in: int = 3600  # seconds

    @field_validator("token")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("token must not be empty")
        return value


class UserInfo(BaseModel):
    """Profile of the signed-in user."""

    email: str | None = None


class SyncPhase(str, Enum):
    """Lifecycle of the synchronization coordinator."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    LOADING = "loading"
    READY = "ready"


class Collection(str, Enum):
    """Locally held collections that are persisted to the spreadsheet."""

    SETTINGS = "settings"
    RESERVATIONS = "reservations"
    EXPENSES = "expenses"
    TAXES = "taxes"


class SyncState(BaseModel):
    """Observable state of the synchronization coordinator."""

    phase: SyncPhase = SyncPhase.UNAUTHENTICATED
    pending_writes: set[Collection] = Field(default_factory=set)
    read_lock: bool = False
    token_expires_at: int | None = None  # epoch milliseconds
    session_expired: bool = False
    last_error: str | None = None
