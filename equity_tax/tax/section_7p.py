"""
Section 7P allocation of vested equity grants.

Splits the value of vested grants into the part the employer reported
under ligningslovens §7P and the part taxed as regular income. The result
feeds TaxInput for the Danish tax calculator.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional

from ..data.exchange_rates import ExchangeRateService
from ..data.records import Grant
from .capital_gains import validate_tax_year

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Section7PSummary:
    """DKK value of vested grants on and off §7P."""

    amount_on_7p_dkk: Decimal
    amount_not_on_7p_dkk: Decimal
    n_grants: int
    year: Optional[int] = None

    @property
    def total_dkk(self) -> Decimal:
        return self.amount_on_7p_dkk + self.amount_not_on_7p_dkk

    def to_dict(self) -> Dict:
        return {
            "year": self.year,
            "amount_on_7p_dkk": str(self.amount_on_7p_dkk),
            "amount_not_on_7p_dkk": str(self.amount_not_on_7p_dkk),
            "n_grants": self.n_grants,
        }


def summarize_7p(
    grants: Iterable[Grant],
    rate_service: ExchangeRateService,
    year: Optional[int] = None,
) -> Section7PSummary:
    """
    Sum grant values on and off §7P.

    Args:
        grants: Equity grants
        rate_service: Converts each grant at its vest date
        year: Only grants vesting in this year (all grants when None)

    Returns:
        Section7PSummary
    """
    if year is not None:
        validate_tax_year(year)

    on_7p = Decimal("0")
    not_on_7p = Decimal("0")
    n_grants = 0

    for grant in grants:
        if year is not None and grant.vest_date.year != year:
            continue
        value_dkk, _ = rate_service.convert(grant.cost_basis, grant.currency, grant.vest_date)
        if grant.covered_by_7p:
            on_7p += value_dkk
        else:
            not_on_7p += value_dkk
        n_grants += 1

    logger.info(f"7P summary: {n_grants} grants, on 7P {on_7p:.2f} DKK, not on 7P {not_on_7p:.2f} DKK")
    return Section7PSummary(
        amount_on_7p_dkk=on_7p,
        amount_not_on_7p_dkk=not_on_7p,
        n_grants=n_grants,
        year=year,
    )
