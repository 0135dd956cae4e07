from typing import Optional, Tuple

from pydantic import BaseModel

from config import Allocation


class GlidePathBand(BaseModel):
    name: str
    above_years: Optional[int]  # band applies when years to retirement exceed this
    allocation: Allocation
    expected_return: float

    model_config = {"frozen": True}


GLIDE_PATH: Tuple[GlidePathBand, ...] = (
    GlidePathBand(
        name="aggressive",
        above_years=20,
        allocation=Allocation(stocks=0.90, bonds=0.08, cash=0.02),
        expected_return=0.106,
    ),
    GlidePathBand(
        name="moderately_aggressive",
        above_years=10,
        allocation=Allocation(stocks=0.75, bonds=0.22, cash=0.03),
        expected_return=0.096,
    ),
    GlidePathBand(
        name="moderate",
        above_years=5,
        allocation=Allocation(stocks=0.60, bonds=0.35, cash=0.05),
        expected_return=0.086,
    ),
    GlidePathBand(
        name="conservative",
        above_years=None,
        allocation=Allocation(stocks=0.40, bonds=0.50, cash=0.10),
        expected_return=0.076,
    ),
)


def glide_path_allocation(years_to_retirement: int) -> GlidePathBand:
    """
    Returns the glide-path band for the given number of years until retirement.

    More than 20 years is aggressive, 11-20 moderately aggressive, 6-10
    moderate, and 5 or fewer (every retirement year included) conservative.
    """
    for band in GLIDE_PATH:
        if band.above_years is None or years_to_retirement > band.above_years:
            return band
    return GLIDE_PATH[-1]
