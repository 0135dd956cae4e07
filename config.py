import os
import json
import datetime as _dt
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np
from pydantic import BaseModel, Field, ValidationError, field_validator, ValidationInfo
from loguru import logger

from constants import (
    ALLOCATION_TOLERANCE,
    DEFAULT_EMBEDDED_GAIN_RATIO,
    DEFAULT_NUM_TRIALS,
    EARLIEST_CLAIM_AGE,
    GLIDE_PATH_SENTINEL,
    LATEST_CLAIM_AGE,
    NUM_ASSET_CLASSES,
    SMALL_EPSILON,
)
from exceptions import ConfigurationError, IncompleteInputs, InvalidAllocation


class FilingStatus(str, Enum):
    SINGLE = "single"
    MARRIED = "married"


class Allocation(BaseModel):
    """Stock/bond/cash weights used for one simulated year."""

    stocks: float = Field(..., description="Fraction of the portfolio held in stocks.")
    bonds: float = Field(..., description="Fraction of the portfolio held in bonds.")
    cash: float = Field(..., description="Fraction of the portfolio held in cash.")

    model_config = {"frozen": True}

    @property
    def total(self) -> float:
        return self.stocks + self.bonds + self.cash

    def has_negative_weight(self) -> bool:
        return min(self.stocks, self.bonds, self.cash) < 0

    def weights(self) -> np.ndarray:
        """
        Returns the weights as a (stocks, bonds, cash) array.

        Raises InvalidAllocation if any weight is negative or not finite, or if
        the weights do not sum to 1 within ALLOCATION_TOLERANCE.
        """
        w = np.array([self.stocks, self.bonds, self.cash], dtype=float)
        if not np.all(np.isfinite(w)) or np.any(w < 0):
            raise InvalidAllocation(
                f"Allocation weights must be finite and non-negative, got "
                f"stocks={self.stocks}, bonds={self.bonds}, cash={self.cash}"
            )
        if abs(w.sum() - 1.0) > ALLOCATION_TOLERANCE:
            raise InvalidAllocation(
                f"Allocation weights must sum to 1, got {w.sum():.6f}"
            )
        return w


class AssetClassAssumption(BaseModel):
    expected_return: float = Field(..., description="Expected nominal annual return.")
    volatility: float = Field(..., ge=0.0, description="Annual standard deviation.")


class MarketAssumptions(BaseModel):
    """Per-asset-class capital market assumptions and their correlation."""

    stocks: AssetClassAssumption = Field(
        default_factory=lambda: AssetClassAssumption(expected_return=0.10, volatility=0.18)
    )
    bonds: AssetClassAssumption = Field(
        default_factory=lambda: AssetClassAssumption(expected_return=0.045, volatility=0.06)
    )
    cash: AssetClassAssumption = Field(
        default_factory=lambda: AssetClassAssumption(expected_return=0.03, volatility=0.01)
    )
    correlation: List[List[float]] = Field(
        default_factory=lambda: [
            [1.0, 0.1, 0.0],
            [0.1, 1.0, 0.2],
            [0.0, 0.2, 1.0],
        ],
        description="Correlation matrix ordered stocks, bonds, cash.",
    )

    @field_validator("correlation")
    @classmethod
    def check_correlation(cls, v: List[List[float]]) -> List[List[float]]:
        m = np.asarray(v, dtype=float)
        if m.shape != (NUM_ASSET_CLASSES, NUM_ASSET_CLASSES):
            raise ValueError(
                f"correlation must be a {NUM_ASSET_CLASSES}x{NUM_ASSET_CLASSES} matrix"
            )
        if not np.allclose(m, m.T):
            raise ValueError("correlation matrix must be symmetric")
        if not np.allclose(np.diag(m), 1.0):
            raise ValueError("correlation matrix must have a unit diagonal")
        try:
            np.linalg.cholesky(m)
        except np.linalg.LinAlgError as e:
            raise ValueError("correlation matrix must be positive definite") from e
        return v

    def means(self) -> np.ndarray:
        return np.array(
            [self.stocks.expected_return, self.bonds.expected_return, self.cash.expected_return]
        )

    def volatilities(self) -> np.ndarray:
        return np.array([self.stocks.volatility, self.bonds.volatility, self.cash.volatility])

    def covariance(self) -> np.ndarray:
        vols = self.volatilities()
        return np.outer(vols, vols) * np.asarray(self.correlation, dtype=float)


class AssetBuckets(BaseModel):
    """Balances grouped by tax treatment. No bucket is ever negative."""

    tax_deferred: float = Field(0.0, ge=0, description="Traditional 401(k)/IRA balances.")
    tax_free: float = Field(0.0, ge=0, description="Roth balances.")
    capital_gains: float = Field(0.0, ge=0, description="Taxable brokerage balances.")
    cash_equivalents: float = Field(0.0, ge=0, description="Savings, money market, CDs.")

    @property
    def total(self) -> float:
        return self.tax_deferred + self.tax_free + self.capital_gains + self.cash_equivalents


class ContributionSchedule(BaseModel):
    """Annual pre-retirement contributions in today's dollars, split by bucket."""

    tax_deferred: float = Field(0.0, ge=0)
    tax_free: float = Field(0.0, ge=0)
    capital_gains: float = Field(0.0, ge=0)
    cash_equivalents: float = Field(0.0, ge=0)
    wage_growth_rate: float = Field(
        0.03, ge=0.0, description="Nominal growth applied to contributions each year."
    )

    @property
    def total(self) -> float:
        return self.tax_deferred + self.tax_free + self.capital_gains + self.cash_equivalents

    def for_year(self, years_from_start: int) -> Dict[str, float]:
        growth = (1 + self.wage_growth_rate) ** years_from_start
        return {
            "tax_deferred": self.tax_deferred * growth,
            "tax_free": self.tax_free * growth,
            "capital_gains": self.capital_gains * growth,
            "cash_equivalents": self.cash_equivalents * growth,
        }


class GuaranteedIncome(BaseModel):
    """Social Security and pension income received during retirement."""

    social_security_benefit: Optional[float] = Field(
        None,
        description="Annual Social Security benefit at full retirement age, in today's dollars.",
    )
    social_security_claim_age: Optional[float] = Field(
        None, description="Age at which Social Security is claimed (62-70)."
    )
    pension_annual: float = Field(
        0.0, ge=0, description="Annual pension in nominal dollars at its start age."
    )
    pension_start_age: Optional[int] = Field(
        None, description="Age the pension starts. Defaults to the retirement age."
    )
    pension_cola: float = Field(
        0.0, ge=0.0, description="Annual cost-of-living increase applied to the pension."
    )


class GuardrailConfig(BaseModel):
    """Tuning constants for the Guyton-Klinger style spending rules."""

    upper_threshold: float = Field(
        1.20,
        ge=1.0,
        description="Capital preservation fires above initial rate times this factor.",
    )
    lower_threshold: float = Field(
        0.80,
        gt=0.0,
        le=1.0,
        description="Prosperity fires below initial rate times this factor.",
    )
    capital_preservation_cut: float = Field(0.10, ge=0.0, lt=1.0)
    prosperity_raise: float = Field(0.10, ge=0.0)
    max_cumulative_cut: float = Field(
        0.25, ge=0.0, lt=1.0, description="Deepest total reduction of real spending."
    )
    max_cumulative_raise: float = Field(
        0.50, ge=0.0, description="Largest total increase of real spending."
    )
    sunset_years: int = Field(
        15,
        ge=0,
        description="Guardrail cuts and raises stop once this many years or fewer remain.",
    )

    @property
    def floor_factor(self) -> float:
        return 1.0 - self.max_cumulative_cut

    @property
    def ceiling_factor(self) -> float:
        return 1.0 + self.max_cumulative_raise


class SimulationParams(BaseModel):
    """Immutable inputs shared by every trial of a Monte Carlo run."""

    Nickname: str = Field(
        "DefaultScenario",
        alias="scenario",
        description="A nickname for this simulation scenario.",
    )
    current_age: int = Field(..., ge=0, le=120)
    retirement_age: Optional[int] = Field(None)
    life_expectancy: int = Field(..., gt=0, le=120)
    start_year: int = Field(
        default_factory=lambda: _dt.date.today().year,
        description="Calendar year in which the household is current_age.",
    )

    starting_assets: AssetBuckets = Field(default_factory=AssetBuckets)
    capital_gains_cost_basis: Optional[float] = Field(
        None,
        ge=0,
        description="Cost basis of the capital gains bucket. Defaults to 80% of its balance.",
    )
    contributions: ContributionSchedule = Field(default_factory=ContributionSchedule)
    guaranteed_income: GuaranteedIncome = Field(default_factory=GuaranteedIncome)

    expected_return: Optional[float] = Field(
        0.07,
        description="Nominal portfolio return. -1 selects the glide path; None uses the market assumptions.",
    )
    return_volatility: float = Field(0.12, ge=0.0)
    market: MarketAssumptions = Field(default_factory=MarketAssumptions)
    allocation: Allocation = Field(
        default_factory=lambda: Allocation(stocks=0.60, bonds=0.35, cash=0.05)
    )
    use_glide_path: bool = Field(False)

    inflation_rate: float = Field(0.025)
    effective_tax_rate: float = Field(0.22, ge=0.0, lt=1.0)
    capital_gains_tax_rate: Optional[float] = Field(
        None,
        ge=0.0,
        lt=1.0,
        description="Overrides the long-term capital gains rate derived from filing status.",
    )
    filing_status: FilingStatus = Field(FilingStatus.SINGLE)
    state_of_residence: Optional[str] = Field(None)

    guardrails_enabled: bool = Field(True)
    guardrails: GuardrailConfig = Field(default_factory=GuardrailConfig)

    annual_retirement_spending: Optional[float] = Field(
        None, description="Desired annual retirement spending in today's dollars."
    )
    legacy_goal: float = Field(0.0, ge=0)
    apply_rmds: bool = Field(False)

    num_trials: int = Field(DEFAULT_NUM_TRIALS, gt=0)
    seeds: Optional[List[int]] = Field(None)
    num_processes: int = Field(1, ge=1)
    target_probability: Optional[float] = Field(None, ge=0.0, le=100.0)

    model_config = {"validate_by_name": True, "frozen": True}

    @field_validator("inflation_rate")
    @classmethod
    def check_inflation_rate(cls, v: float, info: ValidationInfo) -> float:
        if v > 0.06:
            scen_name = info.data.get("Nickname", "N/A")
            logger.warning(
                f"Inflation rate ({v * 100:.1f}%) is relatively high for scenario '{scen_name}'."
            )
        return v

    @field_validator("return_volatility")
    @classmethod
    def check_return_volatility(cls, v: float, info: ValidationInfo) -> float:
        if v > 0.25:
            scen_name = info.data.get("Nickname", "N/A")
            logger.warning(
                f"Return volatility ({v * 100:.1f}%) is relatively high for scenario '{scen_name}'."
            )
        return v

    @field_validator("seeds")
    @classmethod
    def check_seeds(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is not None and any(s < 0 for s in v):
            raise ValueError("seeds must be non-negative integers")
        return v

    @property
    def uses_glide_path(self) -> bool:
        return self.use_glide_path or (
            self.expected_return is not None
            and abs(self.expected_return - GLIDE_PATH_SENTINEL) < SMALL_EPSILON
        )

    @property
    def retirement_spending_at_retirement(self) -> float:
        """Desired spending inflated from today's dollars to the first retirement year."""
        years = max(0, self.retirement_age - self.current_age)
        return self.annual_retirement_spending * (1 + self.inflation_rate) ** years

    @property
    def initial_capital_gains_basis(self) -> float:
        balance = self.starting_assets.capital_gains
        if self.capital_gains_cost_basis is not None:
            return min(self.capital_gains_cost_basis, balance)
        return balance * (1.0 - DEFAULT_EMBEDDED_GAIN_RATIO)


def validate_params(params: SimulationParams) -> None:
    """
    Checks the planning fields the engine refuses to guess.

    Raises IncompleteInputs for missing or non-positive required fields,
    inconsistent ages, negative allocation weights or an empty portfolio,
    and InvalidAllocation when the fixed allocation does not sum to 1.
    """
    income = params.guaranteed_income
    missing: List[str] = []
    if params.retirement_age is None or params.retirement_age <= 0:
        missing.append("retirement_age")
    if params.annual_retirement_spending is None or params.annual_retirement_spending <= 0:
        missing.append("annual_retirement_spending")
    if income.social_security_claim_age is None or income.social_security_claim_age <= 0:
        missing.append("guaranteed_income.social_security_claim_age")
    if income.social_security_benefit is None or income.social_security_benefit <= 0:
        missing.append("guaranteed_income.social_security_benefit")
    if params.allocation.has_negative_weight():
        missing.append("allocation")
    if missing:
        raise IncompleteInputs(
            f"Required planning fields are missing or not positive: {', '.join(missing)}",
            missing,
        )

    if not EARLIEST_CLAIM_AGE <= income.social_security_claim_age <= LATEST_CLAIM_AGE:
        raise IncompleteInputs(
            f"Social Security claim age must be between {EARLIEST_CLAIM_AGE} and "
            f"{LATEST_CLAIM_AGE}, got {income.social_security_claim_age}",
            ["guaranteed_income.social_security_claim_age"],
        )
    if params.retirement_age >= params.life_expectancy:
        raise IncompleteInputs(
            f"Retirement age ({params.retirement_age}) must be below life expectancy "
            f"({params.life_expectancy})",
            ["retirement_age", "life_expectancy"],
        )
    if params.current_age >= params.life_expectancy:
        raise IncompleteInputs(
            f"Current age ({params.current_age}) must be below life expectancy "
            f"({params.life_expectancy})",
            ["current_age", "life_expectancy"],
        )

    no_accumulation = params.retirement_age <= params.current_age
    if params.starting_assets.total <= 0 and (
        params.contributions.total <= 0 or no_accumulation
    ):
        # the initial withdrawal rate would divide by zero
        raise IncompleteInputs(
            "Starting portfolio is empty and nothing is contributed before retirement",
            ["starting_assets"],
        )

    if not params.uses_glide_path:
        params.allocation.weights()


def build_params(data: Dict[str, Any]) -> SimulationParams:
    """Builds and validates SimulationParams from a plain mapping."""
    try:
        params = SimulationParams(**data)
    except ValidationError as e:
        fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
        raise IncompleteInputs(f"Invalid simulation inputs: {e}", fields) from e
    validate_params(params)
    return params


def load_config_from_json(file_path: str) -> Dict[str, Any]:
    """Loads and returns the configuration dictionary from a JSON file."""
    if not os.path.exists(file_path):
        raise ConfigurationError(f"Configuration file not found at: {file_path}")

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Error parsing JSON file '{file_path}': {e}"
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Unexpected error reading config file '{file_path}': {e}"
        ) from e


def load_params_from_json(file_path: str) -> SimulationParams:
    return build_params(load_config_from_json(file_path))
