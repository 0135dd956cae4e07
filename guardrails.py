from enum import Enum
from typing import Optional

from loguru import logger
from pydantic import BaseModel

from config import GuardrailConfig
from constants import SMALL_EPSILON
from returns import real_return


class GuardrailRule(str, Enum):
    NORMAL = "normal"
    CAPITAL_PRESERVATION = "capital_preservation"
    PROSPERITY = "prosperity"
    PMR_SKIP = "pmr_skip"


class GuardrailState(BaseModel):
    """Per-trial spending rule state, updated once per retirement year."""

    prior_year_real_return: Optional[float] = None
    current_withdrawal_rate: float
    initial_withdrawal_rate: float
    cumulative_adjustment_factor: float = 1.0
    floor_factor: float
    ceiling_factor: float
    rule: GuardrailRule = GuardrailRule.NORMAL


class GuardrailDecision(BaseModel):
    next_spending: float
    rule: GuardrailRule
    inflation_skipped: bool
    real_return: float
    withdrawal_rate: float


class GuardrailPolicy:
    """
    Guyton-Klinger style spending rules.

    The Portfolio Management Rule freezes nominal spending for the next year
    whenever the realized real return of the year just finished is negative.
    Capital Preservation cuts real spending when the withdrawal rate drifts
    above the upper guardrail, Prosperity raises it below the lower guardrail.
    Cuts and raises compound into a cumulative factor held between the floor
    and the ceiling, and stop once sunset_years or fewer remain.
    """

    def __init__(self, config: GuardrailConfig, inflation_rate: float, enabled: bool = True):
        self.config = config
        self.inflation_rate = inflation_rate
        self.enabled = enabled

    def start(self, initial_need: float, portfolio_value: float) -> GuardrailState:
        """Creates the state at the first retirement year."""
        rate = initial_need / portfolio_value if portfolio_value > SMALL_EPSILON else 0.0
        return GuardrailState(
            current_withdrawal_rate=rate,
            initial_withdrawal_rate=rate,
            floor_factor=self.config.floor_factor,
            ceiling_factor=self.config.ceiling_factor,
        )

    def next_spending(
        self,
        state: GuardrailState,
        planned_spending: float,
        nominal_return: float,
        portfolio_value: float,
        next_guaranteed_income: float,
        remaining_years: int,
        income_stream_starts: bool = False,
    ) -> GuardrailDecision:
        """
        Sets the planned spending for the following year.

        Args:
            state: Trial state, updated in place.
            planned_spending: Spending planned for the year just finished.
            nominal_return: Realized nominal return of that year.
            portfolio_value: Portfolio value after this year's withdrawal, i.e.
                the value at the start of next year.
            next_guaranteed_income: Guaranteed income expected next year.
            remaining_years: Years left in the plan after the current one.
            income_stream_starts: A guaranteed-income stream pays for the first
                time next year. The initial rate is re-anchored to next year's
                rate, so the drop in withdrawals is not read as prosperity.
        """
        realized_real = real_return(nominal_return, self.inflation_rate)
        state.prior_year_real_return = realized_real

        if not self.enabled:
            next_spending = planned_spending * (1 + self.inflation_rate)
            state.rule = GuardrailRule.NORMAL
            return GuardrailDecision(
                next_spending=next_spending,
                rule=state.rule,
                inflation_skipped=False,
                real_return=realized_real,
                withdrawal_rate=state.current_withdrawal_rate,
            )

        inflation_skipped = realized_real < 0
        candidate = planned_spending if inflation_skipped else planned_spending * (1 + self.inflation_rate)
        rule = GuardrailRule.PMR_SKIP if inflation_skipped else GuardrailRule.NORMAL

        planned_withdrawal = max(0.0, candidate - next_guaranteed_income)
        rate = planned_withdrawal / portfolio_value if portfolio_value > SMALL_EPSILON else 0.0
        state.current_withdrawal_rate = rate
        if income_stream_starts:
            state.initial_withdrawal_rate = rate

        cfg = self.config
        factor = state.cumulative_adjustment_factor
        initial = state.initial_withdrawal_rate
        if (
            initial > SMALL_EPSILON
            and portfolio_value > SMALL_EPSILON
            and remaining_years > cfg.sunset_years
        ):
            if (
                rate > initial * cfg.upper_threshold
                and factor > state.floor_factor + SMALL_EPSILON
            ):
                new_factor = max(state.floor_factor, factor * (1 - cfg.capital_preservation_cut))
                candidate *= new_factor / factor
                state.cumulative_adjustment_factor = new_factor
                rule = GuardrailRule.CAPITAL_PRESERVATION
            elif (
                rate < initial * cfg.lower_threshold
                and factor < state.ceiling_factor - SMALL_EPSILON
            ):
                new_factor = min(state.ceiling_factor, factor * (1 + cfg.prosperity_raise))
                candidate *= new_factor / factor
                state.cumulative_adjustment_factor = new_factor
                rule = GuardrailRule.PROSPERITY

        if rule in (GuardrailRule.CAPITAL_PRESERVATION, GuardrailRule.PROSPERITY):
            logger.trace(
                f"Guardrail {rule.value}: rate {rate:.4f} vs initial {initial:.4f}, "
                f"factor now {state.cumulative_adjustment_factor:.3f}"
            )

        state.rule = rule
        return GuardrailDecision(
            next_spending=candidate,
            rule=rule,
            inflation_skipped=inflation_skipped,
            real_return=realized_real,
            withdrawal_rate=rate,
        )
