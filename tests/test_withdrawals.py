"""Tests for the tax-aware bucket withdrawal planner."""

import pytest

from config import AssetBuckets
from taxes import TaxRates
from withdrawals import WITHDRAWAL_POLICY, ordered_policy, plan_withdrawal


RATES = TaxRates(ordinary_income=0.25, capital_gains=0.2)


def _assert_consistent(plan, need):
    assert plan.net_withdrawn + plan.shortfall == pytest.approx(need, abs=0.01)
    assert plan.total_gross - plan.taxes_paid == pytest.approx(plan.net_withdrawn + plan.reinvested, abs=0.01)
    for value in plan.buckets.model_dump().values():
        assert value >= 0


def test_policy_order():
    order = [p.bucket for p in ordered_policy(WITHDRAWAL_POLICY)]
    assert order == ["cash_equivalents", "capital_gains", "tax_deferred", "tax_free"]


def test_cash_drawn_first_untaxed():
    buckets = AssetBuckets(cash_equivalents=10000, tax_deferred=50000)
    plan = plan_withdrawal(5000, buckets, 0.0, RATES)
    assert plan.gross_withdrawals["cash_equivalents"] == pytest.approx(5000)
    assert plan.gross_withdrawals["tax_deferred"] == 0.0
    assert plan.taxes_paid == 0.0
    assert plan.buckets.cash_equivalents == pytest.approx(5000)
    _assert_consistent(plan, 5000)


def test_tax_deferred_gross_up():
    buckets = AssetBuckets(tax_deferred=100000)
    plan = plan_withdrawal(30000, buckets, 0.0, RATES)
    assert plan.gross_withdrawals["tax_deferred"] == pytest.approx(40000)
    assert plan.taxes_paid == pytest.approx(10000)
    assert plan.net_withdrawn == pytest.approx(30000, abs=0.01)
    assert plan.buckets.tax_deferred == pytest.approx(60000)


def test_capital_gains_taxed_on_gain_share_only():
    buckets = AssetBuckets(capital_gains=100000)
    # half of the balance is gain, so 10% of each gross dollar goes to tax
    plan = plan_withdrawal(9000, buckets, 50000.0, RATES)
    assert plan.gross_withdrawals["capital_gains"] == pytest.approx(10000)
    assert plan.taxes_paid == pytest.approx(1000)
    assert plan.capital_gains_basis == pytest.approx(45000)
    assert plan.buckets.capital_gains == pytest.approx(90000)


def test_shortfall_spills_into_next_bucket():
    buckets = AssetBuckets(cash_equivalents=1000, tax_deferred=10000, tax_free=50000)
    rates = TaxRates(ordinary_income=0.2, capital_gains=0.15)
    plan = plan_withdrawal(20000, buckets, 0.0, rates)
    assert plan.gross_withdrawals["cash_equivalents"] == pytest.approx(1000)
    assert plan.gross_withdrawals["tax_deferred"] == pytest.approx(10000)
    assert plan.gross_withdrawals["tax_free"] == pytest.approx(11000)
    assert plan.taxes_paid == pytest.approx(2000)
    assert plan.buckets.tax_free == pytest.approx(39000)
    assert not plan.depleted
    _assert_consistent(plan, 20000)


@pytest.mark.parametrize("need", [1234.56, 25000.0, 77777.77, 135000.0])
def test_net_proceeds_within_a_cent(need):
    buckets = AssetBuckets(
        cash_equivalents=2500, capital_gains=40000, tax_deferred=90000, tax_free=30000
    )
    plan = plan_withdrawal(need, buckets, 25000.0, RATES)
    assert abs(plan.net_withdrawn - need) <= 0.01
    assert plan.shortfall == pytest.approx(0.0, abs=0.01)
    _assert_consistent(plan, need)


def test_depletion_liquidates_everything():
    buckets = AssetBuckets(cash_equivalents=1000, capital_gains=4000, tax_deferred=8000, tax_free=2000)
    plan = plan_withdrawal(50000, buckets, 4000.0, RATES)
    assert plan.depleted
    assert plan.buckets.total == 0.0
    assert plan.gross_withdrawals["tax_deferred"] == pytest.approx(8000)
    assert plan.taxes_paid == pytest.approx(2000)
    assert plan.net_withdrawn == pytest.approx(13000)
    assert plan.shortfall == pytest.approx(37000)


def test_zero_need_leaves_buckets_untouched():
    buckets = AssetBuckets(cash_equivalents=100, tax_deferred=200)
    plan = plan_withdrawal(0.0, buckets, 0.0, RATES)
    assert plan.total_gross == 0.0
    assert plan.buckets == buckets
    assert not plan.depleted


def test_rmd_taken_first_and_excess_reinvested():
    buckets = AssetBuckets(tax_deferred=246000, tax_free=10000)
    rates = TaxRates(ordinary_income=0.2, capital_gains=0.15)
    plan = plan_withdrawal(5000, buckets, 0.0, rates, age=75, apply_rmds=True)
    # period at 75 is 24.6
    assert plan.rmd == pytest.approx(10000)
    assert plan.taxes_paid == pytest.approx(2000)
    assert plan.net_withdrawn == pytest.approx(5000)
    assert plan.reinvested == pytest.approx(3000)
    assert plan.buckets.cash_equivalents == pytest.approx(3000)
    assert plan.buckets.tax_deferred == pytest.approx(236000)
    assert plan.buckets.tax_free == pytest.approx(10000)
    _assert_consistent(plan, 5000)


def test_rmd_not_applied_before_start_age():
    buckets = AssetBuckets(tax_deferred=246000)
    plan = plan_withdrawal(0.0, buckets, 0.0, RATES, age=72, apply_rmds=True)
    assert plan.rmd == 0.0
    assert plan.total_gross == 0.0
