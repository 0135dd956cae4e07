import os
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from loguru import logger
from matplotlib.ticker import FuncFormatter
from typing import Dict, Any, List

from config import SimulationParams
from constants import TEXT_INPUT_COLOR, TEXT_OUTPUT_COLOR
from monte_carlo import AggregateResult


def _millions_formatter(x_val, pos):
    return f"{x_val:.1f}M" if x_val != 0 else "0"


def _save_figure(filename: str, dpi_setting: int, label: str) -> None:
    try:
        file_directory = os.path.dirname(filename)
        if file_directory:
            os.makedirs(file_directory, exist_ok=True)
        plt.savefig(filename, dpi=dpi_setting)
        logger.info(f"{label} saved to {filename} (DPI: {dpi_setting})")
    except OSError as e:
        logger.error(f"Error saving {label.lower()} '{filename}': {e}")
    finally:
        plt.close()


def plot_ending_balance_histogram(
    result: AggregateResult,
    params: SimulationParams,
    filename: str,
    dpi_setting: int = 150,
):
    """Histogram of ending balances with the scenario inputs and headline results."""
    plt.figure(figsize=(12, 7.5))
    ax = plt.gca()

    balances = pd.Series(result.ending_balances, dtype=float)
    successful = balances[balances > 0]
    balances_in_millions = successful / 1e6

    if not balances_in_millions.empty:
        plt.hist(
            balances_in_millions,
            bins=min(100, max(10, len(balances_in_millions) // 10)),
            edgecolor="black",
            alpha=0.7,
            label=f"Successful Outcomes ({result.success_probability:.1f}%)",
        )
        plt.axvline(
            result.median_ending_balance / 1e6,
            color="blue",
            linestyle="dashed",
            linewidth=1.2,
            label=f"Median Ending Balance: ${result.median_ending_balance / 1e6:.2f}M",
        )
    else:
        logger.info(f"No successful outcomes to plot in histogram for {filename}.")
        ax.text(
            0.5,
            0.5,
            "No successful outcomes to display.",
            transform=ax.transAxes,
            ha="center",
            va="center",
        )

    p = params
    assets = p.starting_assets
    input_lines = [
        f"Scenario: {p.Nickname}",
        f"Ages: {p.current_age} -> retire {p.retirement_age} -> {p.life_expectancy}",
        f"Assets: ${assets.total:,.0f} (TD ${assets.tax_deferred:,.0f}, TF ${assets.tax_free:,.0f}, CG ${assets.capital_gains:,.0f})",
        f"Spending (today): ${p.annual_retirement_spending:,.0f}/yr, Infl {p.inflation_rate * 100:.1f}%",
        f"Returns: {'glide path' if p.uses_glide_path else 'fixed allocation'}",
        f"Guardrails: {'on' if p.guardrails_enabled else 'off'}, Tax {p.effective_tax_rate * 100:.0f}%",
    ]
    output_lines = [
        "--- Results ---",
        f"Success: {result.success_probability:.1f}% of {result.total_trials:,} trials",
        f"Median Ending Bal: ${result.median_ending_balance:,.0f}",
    ]
    if result.legacy_goal_probability is not None:
        output_lines.append(f"Legacy Goal Met: {result.legacy_goal_probability:.1f}%")
    if not result.complete:
        output_lines.append(f"PARTIAL: {result.total_trials}/{result.requested_trials} trials")

    x_pos_text = 0.98
    y_coord_start = 0.98
    line_spacing_val = 0.035
    fontsize_text = 6.5
    box = dict(facecolor="white", alpha=0.80, pad=2, edgecolor="lightgrey", boxstyle="round,pad=0.3")

    for i, line_text in enumerate(input_lines):
        ax.text(
            x_pos_text,
            y_coord_start - i * line_spacing_val,
            line_text,
            transform=ax.transAxes,
            ha="right",
            va="top",
            fontsize=fontsize_text,
            color=TEXT_INPUT_COLOR,
            bbox=box,
        )

    output_y_start_offset = (len(input_lines) * line_spacing_val) + (line_spacing_val * 0.75)
    for j, line_text in enumerate(output_lines):
        ax.text(
            x_pos_text,
            y_coord_start - output_y_start_offset - (j * line_spacing_val),
            line_text,
            transform=ax.transAxes,
            ha="right",
            va="top",
            fontsize=fontsize_text,
            color=TEXT_OUTPUT_COLOR,
            fontweight="bold",
            bbox=box,
        )

    plt.title(f"Ending Balance Distribution: {p.Nickname}", fontsize=14)
    plt.xlabel("Ending Balance (Millions of $)", fontsize=10)
    plt.ylabel("Frequency", fontsize=10)
    plt.xticks(fontsize=8)
    plt.yticks(fontsize=8)

    handles, labels = ax.get_legend_handles_labels()
    if handles:
        ax.legend(handles, labels, fontsize=7, loc="upper left", bbox_to_anchor=(0.01, 0.98))

    plt.grid(True, linestyle=":", alpha=0.6)
    plt.tight_layout()
    _save_figure(filename, dpi_setting, "Histogram plot")


def plot_percentile_bands(
    result: AggregateResult,
    params: SimulationParams,
    filename: str,
    dpi_setting: int = 300,
    max_sample_paths: int = 5,
):
    """
    Plots portfolio value percentile bands per age, a few sample trials when
    the result carries them, and markers for retirement and Social Security.

    Args:
        result: Aggregate with percentile series keyed by percentile.
        params: The scenario, for labels and age markers.
        filename: The full path and filename to save the plot to.
        dpi_setting: The DPI (dots per inch) for the saved image.
        max_sample_paths: Upper limit on individual trials drawn in grey.
    """
    bands_df = result.percentiles_dataframe()
    if bands_df.empty:
        logger.warning(f"No percentile data to plot for '{filename}'. Skipping.")
        return

    plt.figure(figsize=(12, 7))
    ax = plt.gca()
    ages = np.asarray(bands_df.index, dtype=float)

    if result.trials:
        for trial in result.trials[:max_sample_paths]:
            ax.plot(
                ages,
                np.array(trial.portfolio_values()) / 1e6,
                color="grey",
                alpha=0.20,
                linewidth=0.6,
                label="_nolegend_",
            )

    band_specs: List[Dict[str, Any]] = [
        {"low": 10, "high": 90, "color": "orangered", "alpha": 0.15, "label": "10th-90th Percentile Range"},
        {"low": 25, "high": 75, "color": "skyblue", "alpha": 0.25, "label": "25th-75th Percentile Range"},
    ]
    for band in band_specs:
        if band["low"] in bands_df.columns and band["high"] in bands_df.columns:
            ax.fill_between(
                ages,
                bands_df[band["low"]] / 1e6,
                bands_df[band["high"]] / 1e6,
                color=band["color"],
                alpha=band["alpha"],
                label=band["label"],
                interpolate=True,
            )
        else:
            logger.warning(f"Columns for percentile band {band['label']} not found. Skipping band.")

    if 50 in bands_df.columns:
        ax.plot(ages, bands_df[50] / 1e6, color="blue", linewidth=1.8, label="Median (50th Percentile)")

    if ages[0] <= params.retirement_age <= ages[-1]:
        ax.axvline(
            x=params.retirement_age,
            color="black",
            linestyle="--",
            linewidth=1.2,
            label=f"Retirement (age {params.retirement_age})",
        )
    claim_age = params.guaranteed_income.social_security_claim_age
    if claim_age is not None and ages[0] <= claim_age <= ages[-1]:
        ax.axvline(
            x=claim_age,
            color="green",
            linestyle="-.",
            linewidth=1.0,
            label=f"Social Security Starts (age {claim_age:g})",
        )

    ax.set_xlabel("Age", fontsize=9)
    ax.set_ylabel("Portfolio Value (Millions of $)", fontsize=9)
    ax.set_title(
        f"Portfolio Value Percentiles - Scenario: {params.Nickname} "
        f"({result.success_probability:.1f}% success)",
        fontsize=11,
    )
    ax.tick_params(axis="both", which="major", labelsize=7)
    ax.grid(True, linestyle=":", alpha=0.6)
    ax.yaxis.set_major_formatter(FuncFormatter(_millions_formatter))
    ax.set_xlim(left=ages[0], right=ages[-1])

    max_data_val = float(np.nanmax(bands_df.values)) / 1e6
    ax.set_ylim(bottom=0, top=max_data_val * 1.05 if max_data_val > 0 else 1)

    ax.legend(fontsize=7.5, loc="best")
    plt.tight_layout()
    _save_figure(filename, dpi_setting, "Percentile plot")
