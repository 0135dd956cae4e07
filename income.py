from constants import (
    DELAYED_CREDIT_ANNUAL,
    EARLY_REDUCTION_BEYOND_36_MONTHLY,
    EARLY_REDUCTION_FIRST_36_MONTHLY,
    FULL_RETIREMENT_AGE,
    LATEST_CLAIM_AGE,
)
from config import GuaranteedIncome


def claim_age_adjustment(claim_age: float) -> float:
    """
    Multiplier applied to the full-retirement-age benefit for a claim age.

    Claiming early reduces the benefit by 5/9 of 1% for each of the first 36
    months and 5/12 of 1% for each further month. Delaying past full
    retirement age earns 8% per year, up to age 70.
    """
    months = round((claim_age - FULL_RETIREMENT_AGE) * 12)
    if months < 0:
        early = -months
        reduction = (
            min(early, 36) * EARLY_REDUCTION_FIRST_36_MONTHLY
            + max(early - 36, 0) * EARLY_REDUCTION_BEYOND_36_MONTHLY
        )
        return 1.0 - reduction
    delayed = min(months, (LATEST_CLAIM_AGE - FULL_RETIREMENT_AGE) * 12)
    return 1.0 + delayed * DELAYED_CREDIT_ANNUAL / 12


def social_security_income(
    income: GuaranteedIncome, age: int, years_from_start: int, inflation_rate: float
) -> float:
    """Nominal Social Security benefit for a year, COLA'd from today's dollars."""
    if not income.social_security_benefit or income.social_security_claim_age is None:
        return 0.0
    if age < income.social_security_claim_age:
        return 0.0
    adjusted = income.social_security_benefit * claim_age_adjustment(
        income.social_security_claim_age
    )
    return adjusted * (1 + inflation_rate) ** years_from_start


def pension_income(income: GuaranteedIncome, age: int, retirement_age: int) -> float:
    start_age = (
        income.pension_start_age if income.pension_start_age is not None else retirement_age
    )
    if income.pension_annual <= 0 or age < start_age:
        return 0.0
    return income.pension_annual * (1 + income.pension_cola) ** (age - start_age)


def guaranteed_income_for_year(
    income: GuaranteedIncome,
    age: int,
    retirement_age: int,
    years_from_start: int,
    inflation_rate: float,
) -> float:
    return social_security_income(
        income, age, years_from_start, inflation_rate
    ) + pension_income(income, age, retirement_age)


def active_income_streams(income: GuaranteedIncome, age: int, retirement_age: int) -> int:
    """Number of guaranteed-income streams paying at an age."""
    streams = 0
    if social_security_income(income, age, 0, 0.0) > 0:
        streams += 1
    if pension_income(income, age, retirement_age) > 0:
        streams += 1
    return streams
