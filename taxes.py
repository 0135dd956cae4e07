"""Tax rate helpers for the withdrawal planner.

Long-term capital gains brackets pick the gains rate from an estimate of
taxable income and the filing status. Required minimum distributions follow
the IRS Uniform Lifetime Table (2022 revision).
"""

from typing import Dict, Tuple

from pydantic import BaseModel, Field

from config import FilingStatus, SimulationParams
from constants import RMD_START_AGE


class TaxRates(BaseModel):
    ordinary_income: float = Field(..., ge=0.0, lt=1.0)
    capital_gains: float = Field(..., ge=0.0, lt=1.0)

    model_config = {"frozen": True}


# (upper bound of taxable income, rate); the last bound is open-ended
LTCG_BRACKETS: Dict[FilingStatus, Tuple[Tuple[float, float], ...]] = {
    FilingStatus.SINGLE: ((48_450.0, 0.0), (534_450.0, 0.15), (float("inf"), 0.20)),
    FilingStatus.MARRIED: ((96_900.0, 0.0), (601_250.0, 0.15), (float("inf"), 0.20)),
}

UNIFORM_LIFETIME_TABLE: Dict[int, float] = {
    72: 27.4, 73: 26.5, 74: 25.5, 75: 24.6, 76: 23.7, 77: 22.9, 78: 22.0,
    79: 21.1, 80: 20.2, 81: 19.4, 82: 18.5, 83: 17.7, 84: 16.8, 85: 16.0,
    86: 15.2, 87: 14.4, 88: 13.7, 89: 12.9, 90: 12.2, 91: 11.5, 92: 10.8,
    93: 10.1, 94: 9.5, 95: 8.9, 96: 8.4, 97: 7.8, 98: 7.3, 99: 6.8,
    100: 6.4, 101: 6.0, 102: 5.6, 103: 5.2, 104: 4.9, 105: 4.6, 106: 4.3,
    107: 4.1, 108: 3.9, 109: 3.7, 110: 3.5, 111: 3.4, 112: 3.3, 113: 3.1,
    114: 3.0, 115: 2.9, 116: 2.8, 117: 2.7, 118: 2.5, 119: 2.3, 120: 2.0,
}


def long_term_capital_gains_rate(
    taxable_income: float, filing_status: FilingStatus = FilingStatus.SINGLE
) -> float:
    for upper, rate in LTCG_BRACKETS[filing_status]:
        if taxable_income <= upper:
            return rate
    return LTCG_BRACKETS[filing_status][-1][1]


def required_minimum_distribution(balance: float, age: int) -> float:
    """
    RMD for a tax-deferred balance at the given age.

    Zero below RMD_START_AGE or for a non-positive balance. Ages past the end
    of the table use its last distribution period.
    """
    if balance <= 0 or age < RMD_START_AGE:
        return 0.0
    period = UNIFORM_LIFETIME_TABLE.get(age, UNIFORM_LIFETIME_TABLE[max(UNIFORM_LIFETIME_TABLE)])
    return balance / period


def resolve_tax_rates(params: SimulationParams) -> TaxRates:
    """Ordinary rate from the effective rate; gains rate from the override or the brackets."""
    if params.capital_gains_tax_rate is not None:
        gains_rate = params.capital_gains_tax_rate
    else:
        # spending in today's dollars stands in for taxable income
        gains_rate = long_term_capital_gains_rate(
            params.annual_retirement_spending or 0.0, params.filing_status
        )
    return TaxRates(ordinary_income=params.effective_tax_rate, capital_gains=gains_rate)
