from typing import List, Optional, Tuple

import numpy as np
from pydantic import BaseModel

from config import Allocation, AssetBuckets, SimulationParams, validate_params
from constants import BUCKET_NAMES
from exceptions import DepletionDuringAccumulation
from glide_path import glide_path_allocation
from guardrails import GuardrailPolicy, GuardrailRule, GuardrailState
from income import active_income_streams, guaranteed_income_for_year
from returns import ReturnGenerator, real_return
from taxes import resolve_tax_rates
from withdrawals import plan_withdrawal


class YearlyCashFlow(BaseModel):
    """One simulated year of a trial."""

    age: int
    year: int
    phase: str
    allocation: Allocation
    gross_return: float
    real_return: float
    contribution: float = 0.0
    withdrawal: float = 0.0
    taxes_paid: float = 0.0
    planned_spending: float = 0.0
    guaranteed_income: float = 0.0
    spending_shortfall: float = 0.0
    rmd: float = 0.0
    buckets: AssetBuckets
    portfolio_value: float
    guardrail_rule: GuardrailRule = GuardrailRule.NORMAL
    inflation_skipped: bool = False
    depleted: bool = False


class TrialResult(BaseModel):
    trial_index: int
    success: bool
    ending_balance: float
    depletion_year: Optional[int] = None
    depletion_age: Optional[int] = None
    cash_flows: List[YearlyCashFlow]

    def portfolio_values(self) -> List[float]:
        return [cf.portfolio_value for cf in self.cash_flows]


def _apply_return(buckets: AssetBuckets, gross_return: float) -> AssetBuckets:
    growth = max(0.0, 1 + gross_return)
    return AssetBuckets(
        **{name: getattr(buckets, name) * growth for name in BUCKET_NAMES}
    )


class TrialSimulator:
    """
    Runs one lifecycle, year by year, from current_age to life_expectancy.

    Before retirement the year's return is applied and the wage-grown
    contribution is added. From retirement on, the return is applied, the net
    need after guaranteed income is withdrawn bucket by bucket and the
    guardrail policy fixes the following year's spending.
    """

    def __init__(self, params: SimulationParams):
        validate_params(params)
        self.params = params
        self.tax_rates = resolve_tax_rates(params)
        self.policy = GuardrailPolicy(
            params.guardrails, params.inflation_rate, enabled=params.guardrails_enabled
        )

    def _allocation_for(
        self, years_to_retirement: int
    ) -> Tuple[Allocation, Optional[float], Optional[float]]:
        p = self.params
        if p.uses_glide_path:
            band = glide_path_allocation(years_to_retirement)
            return band.allocation, band.expected_return, None
        if p.expected_return is None:
            return p.allocation, None, None
        return p.allocation, p.expected_return, p.return_volatility

    def _guaranteed_income(self, age: int, years_from_start: int) -> float:
        p = self.params
        if age < p.retirement_age:
            return 0.0
        return guaranteed_income_for_year(
            p.guaranteed_income, age, p.retirement_age, years_from_start, p.inflation_rate
        )

    def run_trial(self, rng: np.random.Generator, trial_index: int = 0) -> TrialResult:
        p = self.params
        generator = ReturnGenerator(p.market, rng)
        buckets = p.starting_assets.model_copy()
        basis = p.initial_capital_gains_basis
        spending = p.retirement_spending_at_retirement
        state: Optional[GuardrailState] = None

        cash_flows: List[YearlyCashFlow] = []
        depleted = False
        depletion_year: Optional[int] = None
        depletion_age: Optional[int] = None

        for offset, age in enumerate(range(p.current_age, p.life_expectancy + 1)):
            year = p.start_year + offset
            allocation, expected, volatility = self._allocation_for(p.retirement_age - age)

            if depleted:
                cash_flows.append(
                    YearlyCashFlow(
                        age=age,
                        year=year,
                        phase="retirement",
                        allocation=allocation,
                        gross_return=0.0,
                        real_return=0.0,
                        buckets=AssetBuckets(),
                        portfolio_value=0.0,
                        depleted=True,
                    )
                )
                continue

            gross_return = generator.sample(allocation, expected, volatility)
            year_real_return = real_return(gross_return, p.inflation_rate)
            start_value = buckets.total
            buckets = _apply_return(buckets, gross_return)

            # --- ACCUMULATION ---
            if age < p.retirement_age:
                contribution = p.contributions.for_year(offset)
                updated = {
                    name: getattr(buckets, name) + contribution[name] for name in BUCKET_NAMES
                }
                if any(value < 0 for value in updated.values()):
                    raise DepletionDuringAccumulation(
                        f"Bucket balance went negative at age {age} in trial {trial_index}"
                    )
                buckets = AssetBuckets(**updated)
                basis += contribution["capital_gains"]
                cash_flows.append(
                    YearlyCashFlow(
                        age=age,
                        year=year,
                        phase="accumulation",
                        allocation=allocation,
                        gross_return=gross_return,
                        real_return=year_real_return,
                        contribution=sum(contribution.values()),
                        buckets=buckets,
                        portfolio_value=buckets.total,
                    )
                )
                continue

            # --- RETIREMENT ---
            income = self._guaranteed_income(age, offset)
            need = max(0.0, spending - income)
            if state is None:
                state = self.policy.start(need, start_value)

            plan = plan_withdrawal(
                need, buckets, basis, self.tax_rates, age=age, apply_rmds=p.apply_rmds
            )
            buckets = plan.buckets
            basis = plan.capital_gains_basis

            if plan.depleted:
                depleted = True
                depletion_year = year
                depletion_age = age
                cash_flows.append(
                    YearlyCashFlow(
                        age=age,
                        year=year,
                        phase="retirement",
                        allocation=allocation,
                        gross_return=gross_return,
                        real_return=year_real_return,
                        withdrawal=plan.total_gross,
                        taxes_paid=plan.taxes_paid,
                        planned_spending=spending,
                        guaranteed_income=income,
                        spending_shortfall=plan.shortfall,
                        rmd=plan.rmd,
                        buckets=buckets,
                        portfolio_value=0.0,
                        depleted=True,
                    )
                )
                continue

            decision = self.policy.next_spending(
                state,
                planned_spending=spending,
                nominal_return=gross_return,
                portfolio_value=buckets.total,
                next_guaranteed_income=self._guaranteed_income(age + 1, offset + 1),
                remaining_years=p.life_expectancy - age,
                income_stream_starts=(
                    active_income_streams(p.guaranteed_income, age + 1, p.retirement_age)
                    > active_income_streams(p.guaranteed_income, age, p.retirement_age)
                ),
            )
            cash_flows.append(
                YearlyCashFlow(
                    age=age,
                    year=year,
                    phase="retirement",
                    allocation=allocation,
                    gross_return=gross_return,
                    real_return=year_real_return,
                    withdrawal=plan.total_gross,
                    taxes_paid=plan.taxes_paid,
                    planned_spending=spending,
                    guaranteed_income=income,
                    spending_shortfall=plan.shortfall,
                    rmd=plan.rmd,
                    buckets=buckets,
                    portfolio_value=buckets.total,
                    guardrail_rule=decision.rule,
                    inflation_skipped=decision.inflation_skipped,
                )
            )
            spending = decision.next_spending

        ending_balance = 0.0 if depleted else buckets.total
        return TrialResult(
            trial_index=trial_index,
            success=not depleted,
            ending_balance=max(0.0, ending_balance),
            depletion_year=depletion_year,
            depletion_age=depletion_age,
            cash_flows=cash_flows,
        )
