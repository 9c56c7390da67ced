"""
Global configuration and constants for the creel survey estimation package.
"""

# --- Inference Defaults ---
DEFAULT_CONF_LEVEL = 0.95        # Wald confidence level for all estimators
DEFAULT_RESPONSE = "catch_total" # CPUE / catch numerator column
DEFAULT_EFFORT_COL = "hours_fished"  # Observed effort per interview (hours)
DEFAULT_PARTY_SIZE_COL = "party_size"

# --- Trip Truncation (mean-of-ratios) ---
DEFAULT_MIN_TRIP_HOURS = 0.5     # Incomplete trips shorter than this are excluded
TRUNCATION_WARNING_RATE = 0.10   # Warn when more than this fraction is truncated

# --- Trip Completion ---
TRIP_COMPLETE_COL = "trip_complete"
DEFAULT_PLANNED_EFFORT_COL = "total_trip_effort"  # Planned trip length (hours), length-bias correction

# --- Count Table Column Candidates (first present wins) ---
MINUTES_COL_CANDIDATES = ("interval_minutes", "count_duration", "flight_minutes")
TOTAL_MINUTES_COL_CANDIDATES = ("total_minutes", "total_day_minutes", "block_total_minutes")
BLOCK_MINUTES_COL_CANDIDATES = ("block_total_minutes", "total_minutes")  # Roving strata are shift blocks
PASS_COL_CANDIDATES = ("pass_id", "circuit_id")
ROUTE_MINUTES_COL_CANDIDATES = ("route_minutes", "circuit_minutes")
TIME_COL_CANDIDATES = ("time", "timestamp")
COUNT_COL = "count"
DAY_ID_COL = "date"

# --- Default Grouping ---
DEFAULT_EFFORT_BY = ("date", "location")
DEFAULT_ACCESS_STRATA = ("date", "shift_block")
DEFAULT_ROVING_STRATA = ("date", "shift_block", "location")

# --- Calendar / Frame Columns ---
TARGET_SAMPLE_COL = "target_sample"
ACTUAL_SAMPLE_COL = "actual_sample"
INCLUSION_PROB_COL = "inclusion_prob"
EFFORT_EXPANSION_COL = "effort_expansion"
SAMPLED_FLAG_COL = "sampled"

# --- Replicate Weights ---
DEFAULT_BOOTSTRAP_REPLICATES = 100

# --- Bus-Route ---
MIN_INCLUSION_PROB = 1e-12       # Floor applied when clamping inclusion probabilities

# --- QA / QC ---
QA_MIN_HOURS = 0.1               # Shortest plausible trip (hours)
QA_MAX_HOURS = 24.0              # Longest plausible trip (hours)
QA_EFFORT_TOLERANCE = 0.01       # Allowed |effort - anglers * hours| rounding error
QA_EXPECTED_ZERO_RATE = 0.2      # Expected share of zero-catch interviews
QA_COUNT_COVERAGE = 0.95         # Expected share of date x location cells with a count
QA_MISSING_THRESHOLD = 0.05      # Share of missing values that flags a column
QA_SAMPLE_RECORDS = 10           # Max example rows kept in a QA result

# Score deductions per detected issue, by severity
QA_SEVERITY_PENALTIES = {
    "high": 15,
    "medium": 8,
    "low": 3,
    "none": 0,
}

# Lower score bound for each grade (checked top-down)
QA_GRADE_THRESHOLDS = (
    ("A", 90),
    ("B", 80),
    ("C", 70),
    ("D", 60),
    ("F", 0),
)

# --- Logging ---
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"
PACKAGE_LOGGERS = ("models", "survey", "estimators", "data", "qa")  # Loggers configure_logging routes
