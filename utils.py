import sys
import datetime as _dt
import hashlib
from typing import TYPE_CHECKING, Optional

import pandas as pd
from loguru import logger

from config import SimulationParams
from simulation import TrialResult

if TYPE_CHECKING:
    from monte_carlo import AggregateResult


def _generate_seed_from_timestamp() -> int:
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    return int.from_bytes(hashlib.sha256(ts.encode()).digest()[:8], "big") % (2**32 - 1)


def configure_logging(log_filename: Optional[str] = None, level: str = "INFO") -> None:
    """Routes loguru output to stderr and, optionally, a rotating log file."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )
    if log_filename:
        logger.add(
            log_filename,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}",
            level=level,
            rotation="10 MB",
        )


def log_input_parameters(params: SimulationParams) -> None:
    """Logs the input parameters for the simulation."""
    logger.info(f"--- Input Parameters For Scenario: {params.Nickname} ---")
    logger.info(
        f"Ages: current {params.current_age}, retirement {params.retirement_age}, "
        f"life expectancy {params.life_expectancy} (start year {params.start_year})"
    )
    assets = params.starting_assets
    logger.info(
        f"Starting Assets: ${assets.total:,.2f} (tax-deferred ${assets.tax_deferred:,.0f}, "
        f"tax-free ${assets.tax_free:,.0f}, capital gains ${assets.capital_gains:,.0f}, "
        f"cash ${assets.cash_equivalents:,.0f})"
    )
    contrib = params.contributions
    logger.info(
        f"Annual Contributions: ${contrib.total:,.2f} (grows @ {contrib.wage_growth_rate * 100:.1f}%)"
    )
    income = params.guaranteed_income
    logger.info(
        f"Social Security: ${income.social_security_benefit or 0:,.0f}/yr at FRA (today's $), "
        f"claimed at {income.social_security_claim_age}"
    )
    if income.pension_annual > 0:
        logger.info(
            f"Pension: ${income.pension_annual:,.0f}/yr from age "
            f"{income.pension_start_age or params.retirement_age}, COLA {income.pension_cola * 100:.1f}%"
        )
    logger.info(
        f"Annual Retirement Spending (today's $): ${params.annual_retirement_spending:,.2f} "
        f"-> ${params.retirement_spending_at_retirement:,.2f} at retirement"
    )
    if params.uses_glide_path:
        logger.info("Returns: glide path")
    elif params.expected_return is None:
        a = params.allocation
        logger.info(
            f"Returns: market assumptions, allocation {a.stocks * 100:.0f}/{a.bonds * 100:.0f}/{a.cash * 100:.0f}"
        )
    else:
        logger.info(
            f"Returns: {params.expected_return * 100:.2f}% mean, {params.return_volatility * 100:.2f}% volatility"
        )
    logger.info(f"Inflation Rate: {params.inflation_rate * 100:.2f}%")
    logger.info(
        f"Effective Tax Rate: {params.effective_tax_rate * 100:.2f}%, filing status "
        f"{params.filing_status.value}, state {params.state_of_residence or 'N/A'}"
    )
    if params.capital_gains_tax_rate is not None:
        logger.info(f"Capital Gains Tax Rate: {params.capital_gains_tax_rate * 100:.2f}%")
    logger.info(f"Guardrails: {'on' if params.guardrails_enabled else 'off'}")
    if params.guardrails_enabled:
        g = params.guardrails
        logger.info(
            f"  upper x{g.upper_threshold:.2f} cut {g.capital_preservation_cut * 100:.0f}%, "
            f"lower x{g.lower_threshold:.2f} raise {g.prosperity_raise * 100:.0f}%, "
            f"bounds {g.floor_factor:.2f}-{g.ceiling_factor:.2f}"
        )
    logger.info(f"Apply RMDs: {params.apply_rmds}")
    if params.legacy_goal > 0:
        logger.info(f"Legacy Goal: ${params.legacy_goal:,.2f}")
    logger.info(
        f"Trials: {params.num_trials:,}, processes: {params.num_processes}, seeds: {params.seeds}"
    )
    logger.info("--- End of Input Parameters ---")


def log_simulation_results(params: SimulationParams, result: "AggregateResult") -> None:
    """Logs the final results of the simulation."""
    logger.info(f"--- Final Simulation Results for Scenario: '{params.Nickname}' ---")
    if not result.complete:
        logger.warning(
            f"Partial result: {result.total_trials} of {result.requested_trials} trials completed."
        )
    logger.info(
        f"Probability of Success: {result.success_probability:.2f}% "
        f"({result.successful_trials} succeeded, {result.failed_trials} failed)"
    )
    logger.info(f"Median Ending Balance: ${result.median_ending_balance:,.2f}")
    if result.median_depletion_age is not None:
        logger.info(f"Median Depletion Age (Failed Trials): {result.median_depletion_age:.0f}")
    if result.legacy_goal_probability is not None:
        logger.info(
            f"Probability of Leaving ${params.legacy_goal:,.0f}: {result.legacy_goal_probability:.2f}%"
        )
    logger.info("Ending Balance Percentiles ($):")
    for p_val, value in result.ending_balance_percentiles.items():
        logger.info(f"  {p_val}th: {value:,.2f}")


def cash_flows_to_dataframe(trial: TrialResult) -> pd.DataFrame:
    """Flattens one trial's yearly records into a DataFrame indexed by age."""
    rows = []
    for cf in trial.cash_flows:
        row = cf.model_dump(exclude={"allocation", "buckets"})
        row["guardrail_rule"] = cf.guardrail_rule.value
        row.update({f"alloc_{k}": v for k, v in cf.allocation.model_dump().items()})
        row.update(cf.buckets.model_dump())
        rows.append(row)
    return pd.DataFrame(rows).set_index("age")


def median_trial(result: "AggregateResult") -> Optional[TrialResult]:
    """The trial whose ending balance sits at the median, if trials were kept."""
    if not result.trials:
        return None
    ranked = sorted(result.trials, key=lambda t: (t.ending_balance, t.trial_index))
    return ranked[(len(ranked) + 1) // 2 - 1]
