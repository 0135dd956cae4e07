import math
import os
import time
import multiprocessing
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger
from pydantic import BaseModel

from config import SimulationParams, validate_params
from constants import DEFAULT_PERCENTILES, MAX_SPENDING_SEARCH_DOUBLINGS
from exceptions import SimulationCancelled, SimulationError
from simulation import TrialResult, TrialSimulator
from utils import _generate_seed_from_timestamp


class AggregateResult(BaseModel):
    """Summary of a Monte Carlo run. Percentiles are of portfolio value per age."""

    success_probability: float
    successful_trials: int
    failed_trials: int
    total_trials: int
    requested_trials: int
    complete: bool
    ages: List[int]
    percentiles: Dict[int, List[float]]
    median_ending_balance: float
    ending_balance_percentiles: Dict[int, float]
    ending_balances: List[float]
    legacy_goal_probability: Optional[float] = None
    median_depletion_age: Optional[float] = None
    master_seed: Optional[int] = None
    trials: Optional[List[TrialResult]] = None

    def percentiles_dataframe(self) -> pd.DataFrame:
        """Percentile bands as a DataFrame: one row per age, one column per percentile."""
        return pd.DataFrame(self.percentiles, index=pd.Index(self.ages, name="age"))


def compute_percentile(values: Sequence[float], p: float) -> float:
    """
    Sort-then-index percentile: the value at index ceil(p/100 * n) - 1,
    clamped to [0, n - 1].
    """
    n = len(values)
    if n == 0:
        raise ValueError("cannot take a percentile of an empty sequence")
    ordered = sorted(values)
    idx = math.ceil(p * n / 100) - 1
    return float(ordered[min(max(idx, 0), n - 1)])


def _percentile_index(p: float, n: int) -> int:
    return min(max(math.ceil(p * n / 100) - 1, 0), n - 1)


def aggregate_trials(
    trials: Sequence[TrialResult],
    requested_trials: Optional[int] = None,
    percentiles: Sequence[int] = DEFAULT_PERCENTILES,
    legacy_goal: float = 0.0,
    master_seed: Optional[int] = None,
    include_trials: bool = False,
) -> AggregateResult:
    """
    Reduces completed trials to an AggregateResult.

    Trials are ordered by index first, so the result does not depend on the
    order in which they finished.
    """
    if not trials:
        raise ValueError("at least one completed trial is required")
    ordered = sorted(trials, key=lambda t: t.trial_index)
    n = len(ordered)
    requested = requested_trials if requested_trials is not None else n

    successes = sum(1 for t in ordered if t.success)
    ages = [cf.age for cf in ordered[0].cash_flows]

    trajectories = np.sort(np.array([t.portfolio_values() for t in ordered], dtype=float), axis=0)
    percentile_series = {
        int(p): trajectories[_percentile_index(p, n), :].tolist() for p in percentiles
    }

    ending_balances = [t.ending_balance for t in ordered]
    ending_percentiles = {int(p): compute_percentile(ending_balances, p) for p in percentiles}

    legacy_probability = None
    if legacy_goal > 0:
        met = sum(1 for t in ordered if t.success and t.ending_balance >= legacy_goal)
        legacy_probability = 100.0 * met / n

    depletion_ages = [t.depletion_age for t in ordered if t.depletion_age is not None]
    median_depletion_age = (
        compute_percentile(depletion_ages, 50) if depletion_ages else None
    )

    return AggregateResult(
        success_probability=100.0 * successes / n,
        successful_trials=successes,
        failed_trials=n - successes,
        total_trials=n,
        requested_trials=requested,
        complete=n >= requested,
        ages=ages,
        percentiles=percentile_series,
        median_ending_balance=compute_percentile(ending_balances, 50),
        ending_balance_percentiles=ending_percentiles,
        ending_balances=ending_balances,
        legacy_goal_probability=legacy_probability,
        median_depletion_age=median_depletion_age,
        master_seed=master_seed,
        trials=list(ordered) if include_trials else None,
    )


class RetirementMonteCarloSimulator:
    """
    A Monte Carlo simulator for retirement planning.

    Runs independent lifecycle trials against one immutable SimulationParams
    and reduces them to success statistics and percentile bands. Every trial
    gets its own numpy Generator derived from the master seed and the trial
    index, so results do not depend on how trials are scheduled.
    """

    def __init__(self, params: SimulationParams, main_seed_override: Optional[int] = None):
        validate_params(params)
        self.params = params
        self.trial_simulator = TrialSimulator(params)
        self._use_seed_list = main_seed_override is None and bool(params.seeds)

        if main_seed_override is not None:
            self.main_seed = main_seed_override
            self._entropy: Any = main_seed_override
        elif params.seeds:
            self.main_seed = params.seeds[0]
            self._entropy = list(params.seeds)
        else:
            self.main_seed = _generate_seed_from_timestamp()
            self._entropy = self.main_seed
        logger.info(
            f"Simulator initialized for scenario '{params.Nickname}' with main seed: {self.main_seed}"
        )

    def _trial_rng(self, trial_index: int, num_trials: int) -> np.random.Generator:
        seeds = self.params.seeds
        if self._use_seed_list and len(seeds) >= num_trials:
            return np.random.default_rng(seeds[trial_index])
        return np.random.default_rng(
            np.random.SeedSequence(entropy=self._entropy, spawn_key=(trial_index,))
        )

    def _run_single_simulation_path(self, trial_index: int, num_trials: int) -> TrialResult:
        """Runs one trial with the generator reserved for its index."""
        return self.trial_simulator.run_trial(
            self._trial_rng(trial_index, num_trials), trial_index=trial_index
        )

    def _run_path_from_args(self, args: Tuple[int, int]) -> TrialResult:
        return self._run_single_simulation_path(*args)

    @staticmethod
    def _should_stop(cancel_event: Any, started: float, timeout_seconds: Optional[float]) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return timeout_seconds is not None and time.monotonic() - started >= timeout_seconds

    def _run_sequential(
        self,
        num_trials: int,
        cancel_event: Any,
        started: float,
        timeout_seconds: Optional[float],
    ) -> List[TrialResult]:
        results: List[TrialResult] = []
        for i in range(num_trials):
            if self._should_stop(cancel_event, started, timeout_seconds):
                break
            results.append(self._run_single_simulation_path(i, num_trials))
        return results

    def _run_parallel(
        self,
        num_trials: int,
        num_procs: int,
        cancel_event: Any,
        started: float,
        timeout_seconds: Optional[float],
    ) -> List[TrialResult]:
        results: List[TrialResult] = []
        args = [(i, num_trials) for i in range(num_trials)]
        chunksize = max(1, num_trials // (num_procs * 8))
        with multiprocessing.Pool(processes=num_procs) as pool:
            for result in pool.imap_unordered(self._run_path_from_args, args, chunksize=chunksize):
                results.append(result)
                if len(results) < num_trials and self._should_stop(
                    cancel_event, started, timeout_seconds
                ):
                    pool.terminate()
                    break
        return results

    def run_monte_carlo_simulations(
        self,
        num_trials: Optional[int] = None,
        include_trials: bool = False,
        cancel_event: Any = None,
        timeout_seconds: Optional[float] = None,
        percentiles: Sequence[int] = DEFAULT_PERCENTILES,
    ) -> AggregateResult:
        """
        Runs the trials, either sequentially or in parallel, and aggregates them.

        Args:
            num_trials: Overrides params.num_trials.
            include_trials: Keep every trial's yearly series on the result.
            cancel_event: Any object with is_set(); checked between trials.
            timeout_seconds: Wall-clock budget, checked between trials.
            percentiles: Percentiles of portfolio value to report per age.

        Returns:
            An AggregateResult. If the run was stopped early it covers only the
            completed trials and has complete=False.

        Raises:
            SimulationCancelled: The run was stopped before any trial completed.
        """
        p = self.params
        n = num_trials if num_trials is not None else p.num_trials
        if n <= 0:
            raise ValueError(f"num_trials must be positive, got {n}")
        num_procs_to_use = min(p.num_processes, os.cpu_count() or 1, n)
        started = time.monotonic()

        results: List[TrialResult]
        if num_procs_to_use <= 1:
            logger.debug(f"Running {n} trials sequentially for '{p.Nickname}'.")
            results = self._run_sequential(n, cancel_event, started, timeout_seconds)
        else:
            logger.debug(
                f"Running {n} trials in parallel using {num_procs_to_use} processes for '{p.Nickname}'."
            )
            try:
                results = self._run_parallel(
                    n, num_procs_to_use, cancel_event, started, timeout_seconds
                )
            except SimulationError:
                raise
            except Exception as e:
                logger.error(
                    f"Multiprocessing pool error: {e}. Falling back to sequential execution."
                )
                results = self._run_sequential(n, cancel_event, started, timeout_seconds)

        if not results:
            raise SimulationCancelled(
                f"Simulation for '{p.Nickname}' was stopped before any trial completed."
            )
        if len(results) < n:
            logger.warning(
                f"Simulation for '{p.Nickname}' stopped early: {len(results)} of {n} trials completed."
            )

        return aggregate_trials(
            results,
            requested_trials=n,
            percentiles=percentiles,
            legacy_goal=p.legacy_goal,
            master_seed=self.main_seed,
            include_trials=include_trials,
        )

    def _probability_for_spending(self, annual_spending: float, num_trials: int) -> float:
        candidate = self.params.model_copy(update={"annual_retirement_spending": annual_spending})
        override = None if self._use_seed_list else self.main_seed
        simulator = RetirementMonteCarloSimulator(candidate, main_seed_override=override)
        return simulator.run_monte_carlo_simulations(num_trials=num_trials).success_probability

    def find_sustainable_spending(
        self,
        target_probability: float,
        num_trials: Optional[int] = None,
        tolerance: float = 100.0,
        max_iterations: int = 40,
        verbose: bool = True,
    ) -> Tuple[float, float]:
        """
        Bisects on today's-dollar spending for the highest level whose success
        probability meets the target. Every candidate reuses the same seeds.

        Returns:
            (spending, probability). Spending is 0.0 and probability -1.0 when
            the target cannot be met at any tested level.
        """
        p = self.params
        n = num_trials if num_trials is not None else p.num_trials
        if verbose:
            logger.info(
                f"Searching for sustainable spending at {target_probability:.2f}% success for '{p.Nickname}'."
            )

        lo, lo_prob = 0.0, -1.0
        hi = p.annual_retirement_spending
        hi_prob = self._probability_for_spending(hi, n)
        doublings = 0
        while hi_prob >= target_probability and doublings < MAX_SPENDING_SEARCH_DOUBLINGS:
            lo, lo_prob = hi, hi_prob
            hi *= 2
            hi_prob = self._probability_for_spending(hi, n)
            doublings += 1
        if hi_prob >= target_probability:
            logger.warning(
                f"Target still met at ${hi:,.0f}/yr after {doublings} doublings; returning that level."
            )
            return hi, hi_prob

        for iteration in range(1, max_iterations + 1):
            if hi - lo <= tolerance:
                break
            mid = (lo + hi) / 2
            mid_prob = self._probability_for_spending(mid, n)
            if verbose:
                logger.info(
                    f"Search iter {iteration}: ${mid:,.0f}/yr -> {mid_prob:.2f}% (Target: {target_probability:.2f}%)"
                )
            if mid_prob >= target_probability:
                lo, lo_prob = mid, mid_prob
            else:
                hi = mid

        if lo_prob < 0:
            logger.warning(
                f"Search for '{p.Nickname}' could not meet {target_probability:.2f}% at any tested spending level."
            )
            return 0.0, -1.0
        return lo, lo_prob
