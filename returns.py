from typing import Optional

import numpy as np

from config import Allocation, MarketAssumptions
from constants import MIN_ANNUAL_RETURN, NUM_ASSET_CLASSES, SMALL_EPSILON


def real_return(nominal_return: float, inflation_rate: float) -> float:
    """Converts a realized nominal return to a real return."""
    return (1 + nominal_return) / (1 + inflation_rate) - 1


class ReturnGenerator:
    """
    Samples one nominal annual portfolio return per call.

    Each call draws one standard normal per asset class, correlates them with
    the Cholesky factor of the class correlation matrix and combines the
    resulting class shocks by allocation weight. The generator owns no seed of
    its own: pass a numpy Generator seeded for the trial.
    """

    def __init__(self, market: MarketAssumptions, rng: np.random.Generator):
        self.market = market
        self.rng = rng
        self._means = market.means()
        self._vols = market.volatilities()
        self._chol = np.linalg.cholesky(np.asarray(market.correlation, dtype=float))
        self._cov = market.covariance()

    def portfolio_volatility(self, weights: np.ndarray) -> float:
        return float(np.sqrt(max(0.0, weights @ self._cov @ weights)))

    def sample(
        self,
        allocation: Allocation,
        expected_return: Optional[float] = None,
        volatility: Optional[float] = None,
    ) -> float:
        """
        Args:
            allocation: Weights for this year. Must be non-negative and sum to 1.
            expected_return: Portfolio-level mean. When None the allocation-weighted
                class means are used.
            volatility: Portfolio-level standard deviation. When None the natural
                volatility of the mix is used. Zero returns expected_return exactly.

        Returns:
            The sampled nominal return, floored at -100%.
        """
        weights = allocation.weights()
        z = self.rng.standard_normal(NUM_ASSET_CLASSES)
        class_shocks = self._vols * (self._chol @ z)
        portfolio_shock = float(weights @ class_shocks)

        if expected_return is None:
            sampled = float(weights @ self._means) + portfolio_shock
        else:
            natural_vol = self.portfolio_volatility(weights)
            target_vol = natural_vol if volatility is None else volatility
            if target_vol <= 0 or natural_vol <= SMALL_EPSILON:
                sampled = expected_return
            else:
                sampled = expected_return + target_vol * portfolio_shock / natural_vol

        return max(MIN_ANNUAL_RETURN, sampled)
