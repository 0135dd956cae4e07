"""Smoke tests for the result charts."""

from config import build_params
from monte_carlo import RetirementMonteCarloSimulator
from plotting import plot_ending_balance_histogram, plot_percentile_bands


def _result(**overrides):
    plan = {
        "scenario": "PlotCheck",
        "current_age": 55,
        "retirement_age": 62,
        "life_expectancy": 80,
        "starting_assets": {"tax_deferred": 600000.0, "tax_free": 100000.0},
        "guaranteed_income": {"social_security_benefit": 22000.0, "social_security_claim_age": 66},
        "annual_retirement_spending": 45000.0,
        "seeds": [5],
        "num_trials": 25,
    }
    plan.update(overrides)
    params = build_params(plan)
    return params, RetirementMonteCarloSimulator(params).run_monte_carlo_simulations(include_trials=True)


def test_plots_written(tmp_path):
    params, result = _result()
    hist = tmp_path / "out" / "hist.png"
    bands = tmp_path / "out" / "bands.png"
    plot_ending_balance_histogram(result, params, str(hist))
    plot_percentile_bands(result, params, str(bands), dpi_setting=72)
    assert hist.exists() and hist.stat().st_size > 0
    assert bands.exists() and bands.stat().st_size > 0


def test_histogram_without_successes(tmp_path):
    params, result = _result(
        starting_assets={"cash_equivalents": 1000.0},
        annual_retirement_spending=90000.0,
    )
    assert result.successful_trials == 0
    path = tmp_path / "empty_hist.png"
    plot_ending_balance_histogram(result, params, str(path))
    assert path.exists()
