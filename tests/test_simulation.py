"""Tests for the single-trial lifecycle simulator and input validation."""

import numpy as np
import pytest

from config import build_params
from exceptions import IncompleteInputs, InvalidAllocation
from guardrails import GuardrailRule
from simulation import TrialSimulator


def _base_plan(**overrides):
    plan = {
        "scenario": "TestPlan",
        "current_age": 60,
        "retirement_age": 65,
        "life_expectancy": 70,
        "start_year": 2025,
        "starting_assets": {"cash_equivalents": 500000.0},
        "guaranteed_income": {"social_security_benefit": 10000.0, "social_security_claim_age": 67},
        "expected_return": 0.05,
        "return_volatility": 0.0,
        "inflation_rate": 0.0,
        "effective_tax_rate": 0.2,
        "annual_retirement_spending": 40000.0,
        "guardrails_enabled": False,
        "num_trials": 5,
        "seeds": [1],
    }
    plan.update(overrides)
    return plan


def _run(plan, seed=0):
    return TrialSimulator(build_params(plan)).run_trial(np.random.default_rng(seed))


def test_deterministic_lifecycle():
    result = _run(_base_plan())
    flows = result.cash_flows
    assert [cf.age for cf in flows] == list(range(60, 71))
    assert [cf.year for cf in flows] == list(range(2025, 2036))
    assert [cf.phase for cf in flows[:5]] == ["accumulation"] * 5
    assert all(cf.phase == "retirement" for cf in flows[5:])

    balance = 500000.0
    for cf in flows:
        balance *= 1.05
        if cf.age >= 65:
            income = 10000.0 if cf.age >= 67 else 0.0
            balance -= 40000.0 - income
            assert cf.withdrawal == pytest.approx(40000.0 - income)
            assert cf.guaranteed_income == pytest.approx(income)
        assert cf.gross_return == 0.05
        assert cf.portfolio_value == pytest.approx(balance)

    assert result.success
    assert result.depletion_year is None
    assert result.ending_balance == pytest.approx(balance)


def test_spending_inflated_to_retirement_year():
    result = _run(_base_plan(inflation_rate=0.02))
    by_age = {cf.age: cf for cf in result.cash_flows}
    assert by_age[65].planned_spending == pytest.approx(40000 * 1.02**5)
    assert by_age[66].planned_spending == pytest.approx(40000 * 1.02**6)


def test_contributions_grow_with_wages():
    plan = _base_plan(
        starting_assets={},
        contributions={"tax_deferred": 10000.0, "wage_growth_rate": 0.1},
        expected_return=0.0,
    )
    flows = _run(plan).cash_flows
    assert [cf.contribution for cf in flows[:5]] == pytest.approx([10000 * 1.1**k for k in range(5)])
    assert flows[4].buckets.tax_deferred == pytest.approx(sum(10000 * 1.1**k for k in range(5)))


def test_depletion_marks_failure_and_zeroes_later_years():
    plan = _base_plan(
        current_age=65,
        starting_assets={"cash_equivalents": 100000.0},
        expected_return=0.0,
    )
    result = _run(plan)
    assert not result.success
    assert result.depletion_age == 67
    assert result.depletion_year == 2027
    assert result.ending_balance == 0.0

    by_age = {cf.age: cf for cf in result.cash_flows}
    assert by_age[67].depleted
    assert by_age[67].portfolio_value == 0.0
    assert by_age[67].spending_shortfall == pytest.approx(10000.0)
    for age in (68, 69, 70):
        assert by_age[age].portfolio_value == 0.0
        assert by_age[age].withdrawal == 0.0
        assert by_age[age].depleted


def test_glide_path_derisks_toward_retirement():
    plan = _base_plan(current_age=40, expected_return=-1)
    by_age = {cf.age: cf for cf in _run(plan, seed=5).cash_flows}
    assert by_age[40].allocation.stocks == 0.90
    assert by_age[45].allocation.stocks == 0.75
    assert by_age[55].allocation.stocks == 0.60
    assert by_age[60].allocation.stocks == 0.40
    assert by_age[68].allocation.stocks == 0.40


def test_volatile_trials_never_negative():
    plan = _base_plan(
        return_volatility=0.35,
        annual_retirement_spending=60000.0,
        guardrails_enabled=True,
        life_expectancy=95,
        starting_assets={"tax_deferred": 300000.0, "capital_gains": 100000.0, "tax_free": 50000.0},
    )
    simulator = TrialSimulator(build_params(plan))
    for seed in range(20):
        result = simulator.run_trial(np.random.default_rng(seed), trial_index=seed)
        depleted_seen = False
        for cf in result.cash_flows:
            assert cf.portfolio_value >= 0
            assert all(v >= 0 for v in cf.buckets.model_dump().values())
            if depleted_seen:
                assert cf.portfolio_value == 0.0
                assert cf.withdrawal == 0.0
            depleted_seen = depleted_seen or cf.depleted
        assert result.success == (result.depletion_age is None)


def test_pmr_follows_realized_real_return():
    plan = _base_plan(
        current_age=65,
        life_expectancy=95,
        return_volatility=0.15,
        inflation_rate=0.03,
        guardrails_enabled=True,
        starting_assets={"tax_deferred": 800000.0, "tax_free": 200000.0},
    )
    simulator = TrialSimulator(build_params(plan))
    checked = 0
    for seed in range(10):
        flows = simulator.run_trial(np.random.default_rng(seed)).cash_flows
        for cur, nxt in zip(flows, flows[1:]):
            if cur.depleted or nxt.depleted:
                break
            assert cur.inflation_skipped == (cur.real_return < 0)
            if cur.guardrail_rule in (GuardrailRule.NORMAL, GuardrailRule.PMR_SKIP):
                expected = cur.planned_spending * (1.0 if cur.real_return < 0 else 1.03)
                assert nxt.planned_spending == pytest.approx(expected)
                checked += 1
    assert checked > 0


def test_missing_required_fields():
    plan = _base_plan()
    del plan["annual_retirement_spending"]
    plan["guaranteed_income"] = {"social_security_benefit": 0.0, "social_security_claim_age": 67}
    with pytest.raises(IncompleteInputs) as excinfo:
        build_params(plan)
    assert "annual_retirement_spending" in excinfo.value.fields
    assert "guaranteed_income.social_security_benefit" in excinfo.value.fields


def test_claim_age_must_be_present_and_in_range():
    with pytest.raises(IncompleteInputs):
        build_params(_base_plan(guaranteed_income={"social_security_benefit": 10000.0}))
    with pytest.raises(IncompleteInputs):
        build_params(
            _base_plan(guaranteed_income={"social_security_benefit": 10000.0, "social_security_claim_age": 58})
        )


def test_negative_allocation_is_incomplete():
    with pytest.raises(IncompleteInputs):
        build_params(_base_plan(allocation={"stocks": 1.1, "bonds": -0.1, "cash": 0.0}))


def test_allocation_must_sum_to_one():
    with pytest.raises(InvalidAllocation):
        build_params(_base_plan(allocation={"stocks": 0.5, "bonds": 0.3, "cash": 0.1}))


def test_glide_path_ignores_fixed_allocation_sum():
    params = build_params(
        _base_plan(expected_return=-1, allocation={"stocks": 0.5, "bonds": 0.3, "cash": 0.1})
    )
    assert params.uses_glide_path


def test_empty_portfolio_rejected():
    with pytest.raises(IncompleteInputs):
        build_params(_base_plan(starting_assets={}))


def test_inconsistent_ages_rejected():
    with pytest.raises(IncompleteInputs):
        build_params(_base_plan(retirement_age=70, life_expectancy=70))
    with pytest.raises(IncompleteInputs):
        build_params(_base_plan(retirement_age=0))


def test_type_errors_surface_as_incomplete_inputs():
    with pytest.raises(IncompleteInputs) as excinfo:
        build_params(_base_plan(current_age="sixty"))
    assert "current_age" in excinfo.value.fields


def test_delayed_social_security_does_not_trigger_prosperity():
    plan = _base_plan(
        current_age=65,
        life_expectancy=90,
        starting_assets={"tax_free": 1_000_000.0},
        guaranteed_income={"social_security_benefit": 20000.0, "social_security_claim_age": 67},
        annual_retirement_spending=50000.0,
        expected_return=0.03,
        guardrails_enabled=True,
    )
    flows = _run(plan).cash_flows
    assert flows[2].guaranteed_income == pytest.approx(20000.0)
    assert all(cf.guardrail_rule == GuardrailRule.NORMAL for cf in flows)
    assert all(cf.planned_spending == pytest.approx(50000.0) for cf in flows)


def test_depletion_year_records_no_guardrail_rule():
    plan = _base_plan(
        current_age=65,
        starting_assets={"cash_equivalents": 100000.0},
        expected_return=-0.05,
        guardrails_enabled=True,
    )
    by_age = {cf.age: cf for cf in _run(plan).cash_flows}
    assert by_age[66].guardrail_rule == GuardrailRule.PMR_SKIP
    assert by_age[67].depleted
    assert by_age[67].guardrail_rule == GuardrailRule.NORMAL
