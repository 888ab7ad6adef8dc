"""
Danish personal income tax with section 7P relief.

Implements AM-bidrag, municipal tax, bottom tax and top tax from the
year's rate table. Equity compensation reported under ligningslovens
§7P is relieved up to the employer's yearly allowance; the relief is the
regular tax that the covered amount would otherwise have caused.
"""

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Dict, Optional

from ..config import DANISH_TAX_RATES
from ..data.records import to_decimal
from ..exceptions import InvalidYear, ValidationError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class TaxInput:
    """Inputs for one tax computation (all amounts in DKK)."""

    yearly_salary_dkk: Decimal
    fradrag_dkk: Decimal
    amount_on_7p_dkk: Decimal
    amount_not_on_7p_dkk: Decimal
    year: int
    allowance_7p_dkk: Optional[Decimal] = None

    @classmethod
    def create(
        cls,
        yearly_salary_dkk,
        fradrag_dkk=0,
        amount_on_7p_dkk=0,
        amount_not_on_7p_dkk=0,
        year: int = 2024,
        allowance_7p_dkk=None,
    ) -> "TaxInput":
        """Build an input from ints, strings or floats."""
        return cls(
            yearly_salary_dkk=to_decimal(yearly_salary_dkk),
            fradrag_dkk=to_decimal(fradrag_dkk, ZERO),
            amount_on_7p_dkk=to_decimal(amount_on_7p_dkk, ZERO),
            amount_not_on_7p_dkk=to_decimal(amount_not_on_7p_dkk, ZERO),
            year=year,
            allowance_7p_dkk=None if allowance_7p_dkk is None else to_decimal(allowance_7p_dkk),
        )


@dataclass(frozen=True)
class TaxResult:
    """Result of a tax computation. Recomputable from its TaxInput."""

    year: int
    total_income: Decimal
    am_bidrag: Decimal
    taxable_income: Decimal
    taxable_income_after_deductions: Decimal
    municipal_tax_base: Decimal
    municipal_tax: Decimal
    bottom_tax_base: Decimal
    bottom_tax: Decimal
    top_tax_base: Decimal
    top_tax: Decimal
    allowance_7p: Decimal
    covered_by_7p: Decimal
    tax_7p_reduction: Decimal
    regular_tax_on_7p_amount: Decimal
    total_tax: Decimal
    effective_tax_rate: Decimal
    net_income: Decimal

    def to_dict(self) -> Dict:
        """Convert to dictionary with Decimals rendered as strings."""
        return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in asdict(self).items()}


def get_tax_rates(year: int) -> Dict[str, Decimal]:
    """
    Get the rate table for an income year.

    Raises:
        InvalidYear: If no table exists for the year
    """
    if year not in DANISH_TAX_RATES:
        supported = ", ".join(str(y) for y in sorted(DANISH_TAX_RATES))
        raise InvalidYear(year, f"no tax table, supported years: {supported}")
    return DANISH_TAX_RATES[year]


def _regular_tax(total_income: Decimal, fradrag: Decimal, rates: Dict[str, Decimal]) -> Dict[str, Decimal]:
    """Tax components on an income without any §7P relief."""
    am_bidrag = total_income * rates["am_bidrag"]
    taxable = total_income - am_bidrag
    after_deductions = max(ZERO, taxable - rates["personal_allowance"] - fradrag)
    top_base = max(ZERO, after_deductions - rates["top_tax_threshold"])

    components = {
        "am_bidrag": am_bidrag,
        "taxable_income": taxable,
        "taxable_income_after_deductions": after_deductions,
        "municipal_tax": after_deductions * rates["municipal_tax"],
        "bottom_tax": after_deductions * rates["bottom_tax"],
        "top_tax_base": top_base,
        "top_tax": top_base * rates["top_tax"],
    }
    components["total"] = (
        components["am_bidrag"]
        + components["municipal_tax"]
        + components["bottom_tax"]
        + components["top_tax"]
    )
    return components


def calculate_danish_tax(tax_input: TaxInput) -> TaxResult:
    """
    Calculate Danish income tax.

    Args:
        tax_input: Salary, deductions, §7P and non-§7P equity amounts, year

    Returns:
        TaxResult

    Raises:
        InvalidYear: If the year has no rate table
        ValidationError: If any amount is negative
    """
    rates = get_tax_rates(tax_input.year)

    amounts = {
        "yearly_salary_dkk": tax_input.yearly_salary_dkk,
        "fradrag_dkk": tax_input.fradrag_dkk,
        "amount_on_7p_dkk": tax_input.amount_on_7p_dkk,
        "amount_not_on_7p_dkk": tax_input.amount_not_on_7p_dkk,
    }
    if tax_input.allowance_7p_dkk is not None:
        amounts["allowance_7p_dkk"] = tax_input.allowance_7p_dkk
    for name, value in amounts.items():
        if value < 0:
            raise ValidationError(f"{name} must not be negative: {value}")

    salary = tax_input.yearly_salary_dkk
    on_7p = tax_input.amount_on_7p_dkk
    total_income = salary + on_7p + tax_input.amount_not_on_7p_dkk

    regular = _regular_tax(total_income, tax_input.fradrag_dkk, rates)

    # §7P relief
    if tax_input.allowance_7p_dkk is not None:
        allowance = tax_input.allowance_7p_dkk
    else:
        allowance = salary * rates["allowance_7p_rate"]
    covered = min(on_7p, allowance)

    without_covered = _regular_tax(total_income - covered, tax_input.fradrag_dkk, rates)
    without_7p = _regular_tax(total_income - on_7p, tax_input.fradrag_dkk, rates)
    reduction = regular["total"] - without_covered["total"]

    total_tax = regular["total"] - reduction
    effective_rate = total_tax / total_income if total_income > 0 else ZERO
    after_deductions = regular["taxable_income_after_deductions"]

    result = TaxResult(
        year=tax_input.year,
        total_income=total_income,
        am_bidrag=regular["am_bidrag"],
        taxable_income=regular["taxable_income"],
        taxable_income_after_deductions=after_deductions,
        municipal_tax_base=after_deductions,
        municipal_tax=regular["municipal_tax"],
        bottom_tax_base=after_deductions,
        bottom_tax=regular["bottom_tax"],
        top_tax_base=regular["top_tax_base"],
        top_tax=regular["top_tax"],
        allowance_7p=allowance,
        covered_by_7p=covered,
        tax_7p_reduction=reduction,
        regular_tax_on_7p_amount=regular["total"] - without_7p["total"],
        total_tax=total_tax,
        effective_tax_rate=effective_rate,
        net_income=total_income - total_tax,
    )

    logger.debug(
        f"Danish tax {tax_input.year}: income {total_income}, total tax {total_tax}, "
        f"7P reduction {reduction}"
    )
    return result
