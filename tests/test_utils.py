"""Tests for seeds, DataFrame export and result helpers."""

import numpy as np

from config import build_params
from monte_carlo import RetirementMonteCarloSimulator
from simulation import TrialSimulator
from utils import _generate_seed_from_timestamp, cash_flows_to_dataframe, median_trial


def _plan(**overrides):
    plan = {
        "current_age": 62,
        "retirement_age": 64,
        "life_expectancy": 75,
        "starting_assets": {"tax_deferred": 400000.0, "cash_equivalents": 20000.0},
        "guaranteed_income": {"social_security_benefit": 18000.0, "social_security_claim_age": 67},
        "annual_retirement_spending": 35000.0,
        "seeds": [11],
        "num_trials": 9,
    }
    plan.update(overrides)
    return plan


def test_timestamp_seed_in_range():
    seed = _generate_seed_from_timestamp()
    assert 0 <= seed < 2**32 - 1


def test_cash_flows_dataframe():
    trial = TrialSimulator(build_params(_plan())).run_trial(np.random.default_rng(3))
    df = cash_flows_to_dataframe(trial)
    assert list(df.index) == list(range(62, 76))
    for column in ("portfolio_value", "withdrawal", "taxes_paid", "guardrail_rule", "alloc_stocks", "tax_deferred"):
        assert column in df.columns
    assert df.loc[62, "phase"] == "accumulation"
    assert df.loc[70, "phase"] == "retirement"
    assert (df["portfolio_value"] >= 0).all()


def test_median_trial():
    result = RetirementMonteCarloSimulator(build_params(_plan())).run_monte_carlo_simulations(
        include_trials=True
    )
    trial = median_trial(result)
    assert trial.ending_balance == result.median_ending_balance

    without = RetirementMonteCarloSimulator(build_params(_plan())).run_monte_carlo_simulations()
    assert median_trial(without) is None
