import sys
import datetime as _dt
import multiprocessing
from loguru import logger

from config import load_params_from_json
from exceptions import ConfigurationError, IncompleteInputs, SimulationError
from monte_carlo import RetirementMonteCarloSimulator
from plotting import plot_ending_balance_histogram, plot_percentile_bands
from utils import (
    cash_flows_to_dataframe,
    configure_logging,
    log_input_parameters,
    log_simulation_results,
    median_trial,
)


def main() -> int:
    """
    Main execution entry point.

    Loads the scenario, runs the Monte Carlo trials, logs results, writes the
    median trial's cash flows to CSV, and generates plots. When the scenario
    sets target_probability, also searches for the sustainable spending level.
    """
    current_timestamp_str = _dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    log_filename = f"ret_proj_log_{current_timestamp_str}.log"
    configure_logging(log_filename)
    logger.info(f"Logging initialized. Log file: {log_filename}")

    if len(sys.argv) > 1:
        json_filename = sys.argv[1]
    else:
        json_filename = "config.json"
        logger.info(
            f"No config file specified via argument. Defaulting to '{json_filename}'"
        )

    logger.info(f"Loading configuration from: {json_filename}")
    try:
        params = load_params_from_json(json_filename)
        logger.info(
            f"Configuration for scenario '{params.Nickname}' loaded and validated successfully."
        )
    except ConfigurationError as e:
        logger.error(f"Configuration file error: {e}")
        return 1
    except IncompleteInputs as e:
        logger.error(f"Configuration validation error ({', '.join(e.fields)}): {e}")
        return 1
    except SimulationError as e:
        logger.error(f"Configuration validation error: {e}")
        return 1

    log_input_parameters(params)

    simulator = RetirementMonteCarloSimulator(params)
    logger.info(
        f"--- Running Simulation for '{params.Nickname}' ({params.num_trials} trials) ---"
    )
    try:
        result = simulator.run_monte_carlo_simulations(include_trials=True)
    except SimulationError as e:
        logger.error(f"Simulation for '{params.Nickname}' failed: {e}")
        return 1

    log_simulation_results(params, result)

    if params.target_probability is not None:
        spending, achieved = simulator.find_sustainable_spending(params.target_probability)
        if achieved < 0:
            logger.error(
                f"Target probability of {params.target_probability:.2f}% could not be met for '{params.Nickname}'."
            )
        else:
            logger.info(
                f"Sustainable spending for '{params.Nickname}': ${spending:,.0f}/yr (today's $) "
                f"at {achieved:.2f}% success."
            )

    safe_nickname = "".join(
        c if c.isalnum() or c in ["_", "-"] else "_" for c in params.Nickname
    )
    file_base = f"ret_proj_{safe_nickname}_{current_timestamp_str}"

    trial = median_trial(result)
    if trial is not None:
        csv_filename = f"{file_base}_MEDIAN_TRIAL.csv"
        cash_flows_to_dataframe(trial).to_csv(csv_filename)
        logger.info(f"Median trial cash flows saved to {csv_filename}")

    plot_ending_balance_histogram(result, params, f"{file_base}_HIST.png")
    plot_percentile_bands(result, params, f"{file_base}_BANDS.png")

    logger.info(
        f"--- Main execution finished for scenario '{params.Nickname}'. Outputs in current directory. Log: {log_filename} ---"
    )
    return 0


if __name__ == "__main__":
    multiprocessing.freeze_support()
    sys.exit(main())
