"""Tests for the tax calculators."""

from decimal import Decimal

import pytest

from rental_tax.exceptions import ConfigurationError
from rental_tax.taxes import (
    BrazilianRentalTaxCalculator,
    TaxCalculator,
    available_jurisdictions,
    get_calculator,
    register_calculator,
    to_cents,
)


@pytest.fixture
def calculator():
    return BrazilianRentalTaxCalculator()


class TestDeduction:
    """Deduction is the larger of the dependent and simplified deductions."""

    @pytest.mark.parametrize(
        "dependents,expected",
        [
            (0, Decimal("607.20")),
            (1, Decimal("607.20")),
            (3, Decimal("607.20")),
            (4, Decimal("758.36")),
            (10, Decimal("1895.90")),
        ],
    )
    def test_deduction(self, calculator, dependents, expected):
        breakdown = calculator.calculate_tax(Decimal("5000.00"), dependents)
        assert breakdown.deduction == expected

    def test_deduction_never_below_simplified(self, calculator):
        for dependents in range(0, 20):
            breakdown = calculator.calculate_tax(Decimal("1000.00"), dependents)
            assert breakdown.deduction == max(
                dependents * Decimal("189.59"), Decimal("607.20")
            )


class TestBrackets:
    """Bracket selection and boundaries."""

    def test_top_of_first_bracket_is_inclusive(self, calculator):
        # taxable income exactly 2428.81
        breakdown = calculator.calculate_tax(Decimal("3036.01"), 0)
        assert breakdown.taxable_income == Decimal("2428.81")
        assert breakdown.tax_rate == Decimal("0.075")
        assert breakdown.tax_owed == Decimal("0.00")

    def test_one_cent_above_first_bracket(self, calculator):
        breakdown = calculator.calculate_tax(Decimal("3036.02"), 0)
        assert breakdown.taxable_income == Decimal("2428.82")
        assert breakdown.tax_rate == Decimal("0.15")
        assert breakdown.tax_owed == Decimal("0.00")

    @pytest.mark.parametrize(
        "taxable,rate",
        [
            (Decimal("2826.66"), Decimal("0.15")),
            (Decimal("2826.67"), Decimal("0.225")),
            (Decimal("3751.05"), Decimal("0.225")),
            (Decimal("4664.68"), Decimal("0.275")),
            (Decimal("50000.00"), Decimal("0.275")),
        ],
    )
    def test_find_bracket(self, calculator, taxable, rate):
        assert calculator.find_bracket(taxable).rate == rate

    def test_display_brackets_exclude_open_bracket(self, calculator):
        brackets = calculator.brackets()
        assert len(brackets) == 4
        assert all(b.ceiling is not None for b in brackets)
        assert [b.ceiling for b in brackets] == sorted(b.ceiling for b in brackets)

    def test_deduction_constants(self, calculator):
        assert calculator.deduction_constants() == {
            "dependent_deduction": Decimal("189.59"),
            "simplified_deduction": Decimal("607.20"),
        }


class TestCalculateTax:
    """End-to-end tax calculations."""

    def test_high_income_with_dependents(self, calculator):
        breakdown = calculator.calculate_tax(Decimal("9900.00"), 2)
        assert breakdown.taxable_income == Decimal("9292.80")
        assert breakdown.tax_rate == Decimal("0.275")
        assert breakdown.tax_owed == Decimal("1646.79")

    def test_mid_bracket(self, calculator):
        # 3607.20 - 607.20 = 3000.00 -> 22.5%: 675.00 - 675.49 < 0
        breakdown = calculator.calculate_tax(Decimal("3607.20"), 0)
        assert breakdown.tax_rate == Decimal("0.225")
        assert breakdown.tax_owed == Decimal("0.00")

    def test_rounds_half_up_to_cents(self, calculator):
        # 5000.00 - 607.20 = 4392.80 -> 0.275 * 4392.80 = 1208.02 - 908.73
        breakdown = calculator.calculate_tax(Decimal("5000.00"), 0)
        assert breakdown.tax_owed == Decimal("299.29")
        assert breakdown.tax_owed == to_cents(breakdown.tax_owed)

    def test_zero_income(self, calculator):
        breakdown = calculator.calculate_tax(Decimal("0"), 0)
        assert breakdown.taxable_income == Decimal("0")
        assert breakdown.tax_owed == Decimal("0.00")

    def test_negative_income_is_not_taxed(self, calculator):
        breakdown = calculator.calculate_tax(Decimal("-200.00"), 1)
        assert breakdown.taxable_income == Decimal("0")
        assert breakdown.tax_owed == Decimal("0.00")

    def test_tax_never_negative(self, calculator):
        for cents in range(-100_000, 2_000_000, 7919):
            income = Decimal(cents) / 100
            assert calculator.calculate_tax(income, 0).tax_owed >= 0

    def test_deterministic(self, calculator):
        first = calculator.calculate_tax(Decimal("7777.77"), 3)
        second = calculator.calculate_tax(Decimal("7777.77"), 3)
        assert first == second


class TestRegistry:
    """Calculator lookup by jurisdiction."""

    def test_brazil_is_registered(self):
        assert "BR" in available_jurisdictions()
        calculator = get_calculator("br")
        assert isinstance(calculator, BrazilianRentalTaxCalculator)
        assert isinstance(calculator, TaxCalculator)

    def test_unknown_jurisdiction(self):
        with pytest.raises(ConfigurationError, match="XX"):
            get_calculator("XX")

    def test_register_new_jurisdiction(self):
        class FlatTax:
            jurisdiction = "ZZ"

            def calculate_tax(self, liquid_income, dependents):
                return BrazilianRentalTaxCalculator().calculate_tax(liquid_income, 0)

        register_calculator("zz", FlatTax)
        assert isinstance(get_calculator("ZZ"), FlatTax)
        assert "ZZ" in available_jurisdictions()
