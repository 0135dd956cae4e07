# constants.py

SMALL_EPSILON: float = 1e-6
ALLOCATION_TOLERANCE: float = 1e-6

# Returns
NUM_ASSET_CLASSES: int = 3
MIN_ANNUAL_RETURN: float = -1.0
GLIDE_PATH_SENTINEL: float = -1.0

# Monte Carlo
DEFAULT_NUM_TRIALS: int = 1000
DEFAULT_PERCENTILES = (10, 25, 50, 75, 90)
MAX_SPENDING_SEARCH_DOUBLINGS: int = 12

# Buckets, in the order they appear on records
BUCKET_NAMES = ("tax_deferred", "tax_free", "capital_gains", "cash_equivalents")
DEFAULT_EMBEDDED_GAIN_RATIO: float = 0.2

# Social Security
FULL_RETIREMENT_AGE: int = 67
EARLIEST_CLAIM_AGE: int = 62
LATEST_CLAIM_AGE: int = 70
EARLY_REDUCTION_FIRST_36_MONTHLY: float = 5.0 / 900.0
EARLY_REDUCTION_BEYOND_36_MONTHLY: float = 5.0 / 1200.0
DELAYED_CREDIT_ANNUAL: float = 0.08

# Required minimum distributions
RMD_START_AGE: int = 73

# Plotting
TEXT_INPUT_COLOR = '#1f77b4'
TEXT_OUTPUT_COLOR = '#ff7f0e'
