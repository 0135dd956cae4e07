from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from config import AssetBuckets
from constants import BUCKET_NAMES, RMD_START_AGE, SMALL_EPSILON
from taxes import TaxRates, required_minimum_distribution


class TaxTreatment(str, Enum):
    UNTAXED = "untaxed"
    CAPITAL_GAINS = "capital_gains"
    ORDINARY_INCOME = "ordinary_income"


class BucketPolicy(BaseModel):
    bucket: str
    priority: int
    treatment: TaxTreatment

    model_config = {"frozen": True}


# Lower priority is drawn first. Tax-deferred and tax-free balances are left
# to keep compounding for as long as the cheaper buckets last.
WITHDRAWAL_POLICY: Tuple[BucketPolicy, ...] = (
    BucketPolicy(bucket="cash_equivalents", priority=1, treatment=TaxTreatment.UNTAXED),
    BucketPolicy(bucket="capital_gains", priority=2, treatment=TaxTreatment.CAPITAL_GAINS),
    BucketPolicy(bucket="tax_deferred", priority=3, treatment=TaxTreatment.ORDINARY_INCOME),
    BucketPolicy(bucket="tax_free", priority=4, treatment=TaxTreatment.UNTAXED),
)


class WithdrawalPlan(BaseModel):
    """Gross draws per bucket and the tax paid to deliver a net amount."""

    net_target: float
    net_withdrawn: float
    gross_withdrawals: Dict[str, float]
    taxes_paid: float
    shortfall: float = 0.0
    rmd: float = 0.0
    reinvested: float = Field(0.0, description="RMD proceeds above the need, moved to cash.")
    buckets: AssetBuckets
    capital_gains_basis: float
    depleted: bool = False

    @property
    def total_gross(self) -> float:
        return sum(self.gross_withdrawals.values())


def ordered_policy(policy: Tuple[BucketPolicy, ...] = WITHDRAWAL_POLICY) -> List[BucketPolicy]:
    return sorted(policy, key=lambda p: p.priority)


def _tax_per_gross_dollar(
    treatment: TaxTreatment, tax_rates: TaxRates, balance: float, basis: float
) -> float:
    if treatment == TaxTreatment.ORDINARY_INCOME:
        return tax_rates.ordinary_income
    if treatment == TaxTreatment.CAPITAL_GAINS and balance > SMALL_EPSILON:
        gain_proportion_of_balance = max(0.0, balance - basis) / balance
        return gain_proportion_of_balance * tax_rates.capital_gains
    return 0.0


def plan_withdrawal(
    net_needed: float,
    buckets: AssetBuckets,
    capital_gains_basis: float,
    tax_rates: TaxRates,
    age: Optional[int] = None,
    apply_rmds: bool = False,
    policy: Tuple[BucketPolicy, ...] = WITHDRAWAL_POLICY,
) -> WithdrawalPlan:
    """
    Decides how much to remove from each bucket so after-tax proceeds equal
    net_needed.

    Buckets are drawn in policy order, each grossed up for its own tax
    treatment: ordinary income at the effective rate, capital gains only on the
    gain share of the balance, cash and tax-free untaxed. When the need is at
    least the after-tax value of every bucket, all buckets are liquidated
    together and the remainder is reported as a shortfall.

    Args:
        net_needed: Spendable amount required this year.
        buckets: Balances after this year's investment return.
        capital_gains_basis: Cost basis of the capital gains bucket.
        tax_rates: Ordinary and capital gains rates.
        age: Age this year, used for required minimum distributions.
        apply_rmds: Take the RMD from tax-deferred before anything else.

    Returns:
        A WithdrawalPlan with the updated buckets and cost basis.
    """
    balances = buckets.model_dump()
    basis = min(max(0.0, capital_gains_basis), balances["capital_gains"])
    gross = {name: 0.0 for name in BUCKET_NAMES}
    remaining = max(0.0, net_needed)
    net_withdrawn = 0.0
    taxes_paid = 0.0
    rmd = 0.0
    reinvested = 0.0

    if apply_rmds and age is not None and age >= RMD_START_AGE:
        rmd = min(
            required_minimum_distribution(balances["tax_deferred"], age),
            balances["tax_deferred"],
        )
        if rmd > SMALL_EPSILON:
            tax = rmd * tax_rates.ordinary_income
            proceeds = rmd - tax
            applied = min(proceeds, remaining)
            balances["tax_deferred"] -= rmd
            gross["tax_deferred"] += rmd
            taxes_paid += tax
            net_withdrawn += applied
            remaining -= applied
            reinvested = proceeds - applied
            balances["cash_equivalents"] += reinvested

    steps = [
        (p, _tax_per_gross_dollar(p.treatment, tax_rates, balances[p.bucket], basis))
        for p in ordered_policy(policy)
    ]
    after_tax_capacity = sum(balances[p.bucket] * (1.0 - rate) for p, rate in steps)

    if remaining > SMALL_EPSILON and remaining >= after_tax_capacity - SMALL_EPSILON:
        # final depletion year: everything is sold
        for p, rate in steps:
            bal = balances[p.bucket]
            gross[p.bucket] += bal
            taxes_paid += bal * rate
            balances[p.bucket] = 0.0
        net_withdrawn += after_tax_capacity
        shortfall = max(0.0, remaining - after_tax_capacity)
        return WithdrawalPlan(
            net_target=max(0.0, net_needed),
            net_withdrawn=net_withdrawn,
            gross_withdrawals=gross,
            taxes_paid=taxes_paid,
            shortfall=shortfall,
            rmd=rmd,
            reinvested=reinvested,
            buckets=AssetBuckets(**{name: 0.0 for name in BUCKET_NAMES}),
            capital_gains_basis=0.0,
            depleted=shortfall > SMALL_EPSILON,
        )

    for p, rate in steps:
        if remaining <= SMALL_EPSILON:
            break
        bal = balances[p.bucket]
        if bal <= SMALL_EPSILON:
            continue
        capacity = bal * (1.0 - rate)
        if remaining >= capacity:
            final_gross_withdrawal = bal
            net_from_bucket = capacity
        else:
            final_gross_withdrawal = min(remaining / (1.0 - rate), bal)
            net_from_bucket = remaining

        if p.treatment == TaxTreatment.CAPITAL_GAINS:
            principal_component = final_gross_withdrawal * (basis / bal)
            basis = max(0.0, basis - principal_component)

        balances[p.bucket] = max(0.0, bal - final_gross_withdrawal)
        gross[p.bucket] += final_gross_withdrawal
        taxes_paid += final_gross_withdrawal * rate
        net_withdrawn += net_from_bucket
        remaining -= net_from_bucket

    return WithdrawalPlan(
        net_target=max(0.0, net_needed),
        net_withdrawn=net_withdrawn,
        gross_withdrawals=gross,
        taxes_paid=taxes_paid,
        shortfall=max(0.0, remaining),
        rmd=rmd,
        reinvested=reinvested,
        buckets=AssetBuckets(**balances),
        capital_gains_basis=min(basis, balances["capital_gains"]),
        depleted=False,
    )
