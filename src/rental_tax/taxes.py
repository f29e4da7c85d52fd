"""Progressive income tax calculators for rental income.

Calculators are looked up by jurisdiction so that a new country is a new
registered implementation rather than a branch in the callers.
"""

from collections.abc import Callable
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol, runtime_checkable

from .exceptions import ConfigurationError
from .models import TaxBracket, TaxBreakdown

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_cents(amount: Decimal) -> Decimal:
    """
    Round a Decimal amount to cents.
    Uses ROUND_HALF_UP for consistency.
    """
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@runtime_checkable
class TaxCalculator(Protocol):
    """Capability shared by every jurisdiction's calculator."""

    jurisdiction: str

    def calculate_tax(self, liquid_income: Decimal, dependents: int) -> TaxBreakdown:
        """Compute the monthly tax owed on *liquid_income*."""
        ...


class BrazilianRentalTaxCalculator:
    """Brazilian monthly income tax on rental receipts (2025 tables)."""

    jurisdiction = "BR"

    DEPENDENT_DEDUCTION = Decimal("189.59")
    SIMPLIFIED_DEDUCTION = Decimal("607.20")

    # Ascending by ceiling; ceilings are inclusive
    TAX_BRACKETS: tuple[TaxBracket, ...] = (
        TaxBracket(
            ceiling=Decimal("2428.81"), rate=Decimal("0.075"), deduction=Decimal("182.16")
        ),
        TaxBracket(
            ceiling=Decimal("2826.66"), rate=Decimal("0.15"), deduction=Decimal("394.16")
        ),
        TaxBracket(
            ceiling=Decimal("3751.05"), rate=Decimal("0.225"), deduction=Decimal("675.49")
        ),
        TaxBracket(
            ceiling=Decimal("4664.68"), rate=Decimal("0.275"), deduction=Decimal("908.73")
        ),
        TaxBracket(ceiling=None, rate=Decimal("0.275"), deduction=Decimal("908.73")),
    )

    def calculate_tax(self, liquid_income: Decimal, dependents: int) -> TaxBreakdown:
        """
        Calculate tax from liquid income and number of dependents.

        Steps:
        1. Deduction is the larger of the per-dependent and simplified deductions
        2. Taxable income is liquid income minus deduction, floored at zero
        3. Pick the first bracket whose ceiling is not below taxable income
        4. Tax is rate x taxable income minus the bracket deduction, floored at
           zero and rounded half-up to the cent

        Args:
            liquid_income: Month's owner income minus expenses (may be negative)
            dependents: Number of dependents (validated upstream)

        Returns:
            Tax breakdown for the month
        """
        deduction = max(dependents * self.DEPENDENT_DEDUCTION, self.SIMPLIFIED_DEDUCTION)
        taxable_income = max(liquid_income - deduction, ZERO)

        bracket = self.find_bracket(taxable_income)
        tax_owed = max(taxable_income * bracket.rate - bracket.deduction, ZERO)

        return TaxBreakdown(
            deduction=deduction,
            taxable_income=taxable_income,
            tax_rate=bracket.rate,
            tax_owed=to_cents(tax_owed),
        )

    def find_bracket(self, taxable_income: Decimal) -> TaxBracket:
        """Find the bracket that applies to *taxable_income*."""
        for bracket in self.TAX_BRACKETS:
            if bracket.ceiling is None or taxable_income <= bracket.ceiling:
                return bracket
        return self.TAX_BRACKETS[-1]

    def brackets(self) -> list[TaxBracket]:
        """Brackets for display, without the open-ended top bracket."""
        return [b for b in self.TAX_BRACKETS if b.ceiling is not None]

    def deduction_constants(self) -> dict[str, Decimal]:
        """Deduction constants for display."""
        return {
            "dependent_deduction": self.DEPENDENT_DEDUCTION,
            "simplified_deduction": self.SIMPLIFIED_DEDUCTION,
        }


_REGISTRY: dict[str, Callable[[], TaxCalculator]] = {}


def register_calculator(
    jurisdiction: str, factory: Callable[[], TaxCalculator]
) -> None:
    """Register a calculator factory under a jurisdiction code (e.g. "BR")."""
    _REGISTRY[jurisdiction.upper()] = factory


def get_calculator(jurisdiction: str = "BR") -> TaxCalculator:
    """
    Get a calculator for a jurisdiction.

    Raises:
        ConfigurationError: If no calculator is registered for the jurisdiction
    """
    try:
        factory = _REGISTRY[jurisdiction.upper()]
    except KeyError:
        raise ConfigurationError(
            f"No tax calculator registered for jurisdiction '{jurisdiction}'. "
            f"Available: {', '.join(available_jurisdictions()) or 'none'}"
        ) from None
    return factory()


def available_jurisdictions() -> list[str]:
    """Registered jurisdiction codes, sorted."""
    return sorted(_REGISTRY)


register_calculator(BrazilianRentalTaxCalculator.jurisdiction, BrazilianRentalTaxCalculator)
