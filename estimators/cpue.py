"""
Catch-per-unit-effort estimators.

Two ways of turning interview catch and effort into a rate:

    - ratio-of-means (RoM): design-weighted sum(catch) / sum(effort).
      Consistent for completed trips, whatever the party size.
    - mean-of-ratios (MoR): design-weighted mean of catch_i / effort_i over
      trips at least ``min_trip_hours`` long.  Used for incomplete (roving)
      trips.  Optionally each ratio is weighted by 1 / planned trip length
      (Pollock length-bias correction).

``CpueMode.AUTO`` classifies every group by its trip-completion flags and
dispatches on ``TripCompleteness``: complete groups use RoM, incomplete
groups use MoR, mixed groups combine RoM on the complete trips with MoR on
the incomplete trips, weighting each part by its share of design-weighted
effort.  The combined variance is ``w1^2 V1 + w2^2 V2``.

Standard errors for a single observation: RoM reports 0.0 (single-PSU
certainty floor of the linearization); MoR reports NaN and flags
``single_observation`` in the diagnostics.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from config import (
    DEFAULT_CONF_LEVEL,
    DEFAULT_EFFORT_COL,
    DEFAULT_MIN_TRIP_HOURS,
    DEFAULT_PLANNED_EFFORT_COL,
    DEFAULT_RESPONSE,
    TRIP_COMPLETE_COL,
    TRUNCATION_WARNING_RATE,
)
from data.schemas import normalize_by, require_columns
from models.design import SurveyDesign
from models.errors import (
    ComputationGap,
    InputValidationError,
    check_conf_level,
    is_number,
    warn_data_quality,
)
from models.estimate import EstimateRecord, records_to_frame
from models.methods import CpueMode, LengthBiasCorrection, TripCompleteness
from survey.variance import VarianceResult, group_positions, survey_mean, survey_ratio


logger = logging.getLogger(__name__)

_TRUE_FLAGS = {"true", "t", "yes", "y", "1", "1.0", "complete", "completed"}
_FALSE_FLAGS = {"false", "f", "no", "n", "0", "0.0", "incomplete"}


# ---------------------------------------------------------------------------
# Value structs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TripRates:
    """Per-trip rates that survived truncation and finiteness filtering.

    ``positions``, ``rates`` and ``weights`` are aligned; ``weights`` holds the
    length-bias weights (1 / planned hours) or is None without correction.
    """

    positions: np.ndarray
    rates: np.ndarray
    weights: Optional[np.ndarray]
    n_input: int
    n_truncated: int
    n_nonfinite: int
    n_planned_corrected: int

    @property
    def n(self) -> int:
        return len(self.positions)


@dataclass
class _RunTally:
    """Counts accumulated across groups for the call-level warnings."""

    mor_input: int = 0
    truncated: int = 0
    nonfinite: int = 0
    planned_corrected: int = 0

    def add(self, trips: TripRates) -> None:
        self.mor_input += trips.n_input
        self.truncated += trips.n_truncated
        self.nonfinite += trips.n_nonfinite
        self.planned_corrected += trips.n_planned_corrected


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def completion_flags(values: pd.Series) -> np.ndarray:
    """Map a trip-completion column to 1.0 / 0.0, NaN where unreadable."""
    out = np.full(len(values), np.nan)
    for i, value in enumerate(values.tolist()):
        if value is None or (isinstance(value, float) and np.isnan(value)):
            continue
        if isinstance(value, (bool, np.bool_)):
            out[i] = 1.0 if value else 0.0
            continue
        text = str(value).strip().lower()
        if text in _TRUE_FLAGS:
            out[i] = 1.0
        elif text in _FALSE_FLAGS:
            out[i] = 0.0
    return out


def classify_completeness(flags: np.ndarray) -> TripCompleteness:
    """Completeness of a group from its (non-NA) completion flags."""
    if np.all(flags == 1.0):
        return TripCompleteness.COMPLETE
    if np.all(flags == 0.0):
        return TripCompleteness.INCOMPLETE
    return TripCompleteness.MIXED


def trip_rates(
    design: SurveyDesign,
    positions: np.ndarray,
    response: str,
    effort_col: str,
    min_trip_hours: float,
    correction: LengthBiasCorrection,
    planned_col: str,
) -> TripRates:
    """Truncate short trips, form catch / effort, and attach bias weights."""
    positions = np.asarray(positions, dtype=int)
    data = design.data
    catch = data[response].to_numpy(dtype=float)[positions]
    effort = data[effort_col].to_numpy(dtype=float)[positions]

    with np.errstate(invalid="ignore"):
        short = effort < min_trip_hours
    keep = ~short
    with np.errstate(divide="ignore", invalid="ignore"):
        rates = catch / effort
    usable = np.isfinite(rates)

    weights = None
    n_corrected = 0
    if correction is LengthBiasCorrection.POLLOCK:
        planned = data[planned_col].to_numpy(dtype=float)[positions]
        with np.errstate(invalid="ignore"):
            low = keep & usable & (planned < effort)
        n_corrected = int(low.sum())
        planned = np.where(low, effort, planned)
        with np.errstate(divide="ignore", invalid="ignore"):
            weights = 1.0 / planned
        usable &= np.isfinite(weights) & (weights > 0)

    n_nonfinite = int((keep & ~usable).sum())
    keep &= usable
    return TripRates(
        positions=positions[keep],
        rates=rates[keep],
        weights=None if weights is None else weights[keep],
        n_input=len(positions),
        n_truncated=int(short.sum()),
        n_nonfinite=n_nonfinite,
        n_planned_corrected=n_corrected,
    )


def _mean_of_ratios(design: SurveyDesign, trips: TripRates) -> VarianceResult:
    n_rows = design.n_rows
    y = np.full(n_rows, np.nan)
    y[trips.positions] = trips.rates
    b = None
    if trips.weights is not None:
        b = np.full(n_rows, np.nan)
        b[trips.positions] = trips.weights
    res = survey_mean(design, y, trips.positions, case_weights=b)
    if res.n == 1:
        return VarianceResult(estimate=res.estimate, variance=float("nan"), n=1, method=res.method)
    return res


def _ratio_of_means(design: SurveyDesign, positions, response: str, effort_col: str) -> VarianceResult:
    return survey_ratio(
        design,
        design.data[response].to_numpy(dtype=float),
        design.data[effort_col].to_numpy(dtype=float),
        positions,
    )


def _weighted_effort(design: SurveyDesign, positions, effort_col: str) -> float:
    effort = design.data[effort_col].to_numpy(dtype=float)[positions]
    w = np.asarray(design.weights)[positions]
    ok = np.isfinite(effort)
    return float(np.sum(w[ok] * effort[ok]))


def _trip_diagnostics(trips: TripRates, correction: LengthBiasCorrection) -> Dict:
    diag = {
        "n_truncated": trips.n_truncated,
        "n_nonfinite_excluded": trips.n_nonfinite,
        "bias_correction": correction.value,
    }
    if trips.weights is not None:
        diag["n_planned_corrected"] = trips.n_planned_corrected
        diag["mean_bias_weight"] = float(np.mean(trips.weights)) if trips.n else float("nan")
    if trips.n == 1:
        diag["single_observation"] = True
    return diag


# ---------------------------------------------------------------------------
# Per-group estimators (dispatched on TripCompleteness)
# ---------------------------------------------------------------------------

class _GroupEstimator:
    """Holds the call options so that each completeness case is one method."""

    def __init__(self, design, response, effort_col, min_trip_hours,
                 correction, planned_col, conf_level, tally):
        self.design = design
        self.response = response
        self.effort_col = effort_col
        self.min_trip_hours = min_trip_hours
        self.correction = correction
        self.planned_col = planned_col
        self.conf_level = conf_level
        self.tally = tally

    @property
    def rom_label(self) -> str:
        return f"cpue_ratio_of_means:{self.response}"

    @property
    def mor_label(self) -> str:
        return f"cpue_mean_of_ratios:{self.response}:{self.correction.value}"

    @property
    def mixed_label(self) -> str:
        return f"cpue_mixed:{self.response}:{self.correction.value}"

    def _trips(self, positions) -> TripRates:
        trips = trip_rates(
            self.design, positions, self.response, self.effort_col,
            self.min_trip_hours, self.correction, self.planned_col,
        )
        self.tally.add(trips)
        return trips

    def complete(self, keys, positions, diag) -> EstimateRecord:
        res = _ratio_of_means(self.design, positions, self.response, self.effort_col)
        if res.n == 0 or not np.isfinite(res.estimate):
            gap = ComputationGap("no_usable_trips", "no interview with finite catch and positive effort")
            return EstimateRecord.gap(keys, gap, res.n, self.rom_label, diag)
        if res.n == 1:
            res = VarianceResult(estimate=res.estimate, variance=0.0, n=1, method=res.method)
        diag["variance_method"] = res.method
        return EstimateRecord.from_estimate(
            keys, res.estimate, res.se, res.n, self.rom_label, self.conf_level, diag,
        )

    def incomplete(self, keys, positions, diag) -> EstimateRecord:
        trips = self._trips(positions)
        diag.update(_trip_diagnostics(trips, self.correction))
        if trips.n == 0:
            gap = ComputationGap("no_usable_trips", "every trip was truncated or had a non-finite rate")
            return EstimateRecord.gap(keys, gap, 0, self.mor_label, diag)
        res = _mean_of_ratios(self.design, trips)
        diag["variance_method"] = res.method
        return EstimateRecord.from_estimate(
            keys, res.estimate, res.se, res.n, self.mor_label, self.conf_level, diag,
        )

    def mixed(self, keys, positions, flags, diag) -> EstimateRecord:
        done = positions[flags == 1.0]
        rom = _ratio_of_means(self.design, done, self.response, self.effort_col)
        trips = self._trips(positions[flags == 0.0])
        diag.update(_trip_diagnostics(trips, self.correction))
        mor = _mean_of_ratios(self.design, trips) if trips.n else None
        diag["n_complete"] = rom.n
        diag["n_incomplete"] = trips.n

        rom_ok = rom.n > 0 and np.isfinite(rom.estimate)
        mor_ok = mor is not None and np.isfinite(mor.estimate)
        if rom_ok and mor_ok:
            e1 = _weighted_effort(self.design, done, self.effort_col)
            e2 = _weighted_effort(self.design, trips.positions, self.effort_col)
            w1 = e1 / (e1 + e2)
            w2 = 1.0 - w1
            estimate = w1 * rom.estimate + w2 * mor.estimate
            variance = w1 ** 2 * rom.variance + w2 ** 2 * mor.variance
            se = float(np.sqrt(variance)) if np.isfinite(variance) else float("nan")
            diag["complete_effort_share"] = w1
            diag["variance_method"] = rom.method
            return EstimateRecord.from_estimate(
                keys, estimate, se, rom.n + trips.n, self.mixed_label, self.conf_level, diag,
            )
        if rom_ok:
            diag["mixed_fallback"] = CpueMode.RATIO_OF_MEANS.value
            diag["variance_method"] = rom.method
            return EstimateRecord.from_estimate(
                keys, rom.estimate, rom.se, rom.n, self.mixed_label, self.conf_level, diag,
            )
        if mor_ok:
            diag["mixed_fallback"] = CpueMode.MEAN_OF_RATIOS.value
            diag["variance_method"] = mor.method
            return EstimateRecord.from_estimate(
                keys, mor.estimate, mor.se, mor.n, self.mixed_label, self.conf_level, diag,
            )
        gap = ComputationGap("no_usable_trips", "neither complete nor incomplete trips were usable")
        return EstimateRecord.gap(keys, gap, 0, self.mixed_label, diag)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _validate_options(design, by, response, effort_col, mode, min_trip_hours,
                      correction, planned_col, completion_col, conf_level):
    if not isinstance(design, SurveyDesign):
        raise InputValidationError(
            f"design must be a SurveyDesign, got {type(design).__name__}",
            parameter="design",
            hint="build one with build_access_design or build_simple_design",
        )
    check_conf_level(conf_level)
    if (not is_number(min_trip_hours) or not np.isfinite(min_trip_hours)
            or min_trip_hours < 0):
        raise InputValidationError(
            f"min_trip_hours must be a non-negative number, got {min_trip_hours!r}",
            parameter="min_trip_hours",
            hint="use 0 to disable truncation",
        )
    columns = list(by) + [response, effort_col]
    require_columns(design.data, columns, "estimate_cpue")
    if correction is LengthBiasCorrection.POLLOCK and planned_col not in design.data.columns:
        raise InputValidationError(
            f"Length-bias correction requires the planned trip effort column '{planned_col}'",
            parameter="planned_effort_col",
            hint="supply planned total trip hours or use length_bias_correction='none'",
        )
    if mode is CpueMode.AUTO:
        require_columns(design.data, [completion_col], "estimate_cpue (auto mode)")


def estimate_cpue(
    design: SurveyDesign,
    by: Sequence[str] = (),
    response: str = DEFAULT_RESPONSE,
    effort_col: str = DEFAULT_EFFORT_COL,
    mode="auto",
    min_trip_hours: float = DEFAULT_MIN_TRIP_HOURS,
    length_bias_correction="none",
    planned_effort_col: str = DEFAULT_PLANNED_EFFORT_COL,
    completion_col: str = TRIP_COMPLETE_COL,
    conf_level: float = DEFAULT_CONF_LEVEL,
) -> pd.DataFrame:
    """Estimate CPUE per group of interviews.

    Args:
        design: Interview-level design.
        by: Grouping columns.
        response: Catch column (numerator).
        effort_col: Observed effort column in hours (denominator).
        mode: "auto", "ratio_of_means" or "mean_of_ratios".
        min_trip_hours: Mean-of-ratios truncation threshold; trips shorter
            than this are left out.  0 disables truncation.
        length_bias_correction: "none" or "pollock".
        planned_effort_col: Planned total trip hours, required for "pollock".
        completion_col: Trip-completion flag column, required for "auto".
        conf_level: Wald interval level.

    Returns:
        One row per group with estimate, standard_error, ci_low, ci_high,
        sample_size, method_label and diagnostics.

    Raises:
        InputValidationError: Missing columns, negative truncation threshold,
            confidence level outside (0, 1), or length-bias correction without
            its planned-effort column.
    """
    mode = CpueMode.parse(mode, "mode")
    correction = LengthBiasCorrection.parse(length_bias_correction, "length_bias_correction")
    by = normalize_by(by)
    _validate_options(design, by, response, effort_col, mode, min_trip_hours,
                      correction, planned_effort_col, completion_col, conf_level)

    tally = _RunTally()
    estimator = _GroupEstimator(design, response, effort_col, float(min_trip_hours),
                                correction, planned_effort_col, conf_level, tally)

    flags = None
    if mode is CpueMode.AUTO:
        flags = completion_flags(design.data[completion_col])
        n_na = int(np.isnan(flags).sum())
        if n_na:
            warn_data_quality(
                logger,
                f"Excluded {n_na} interviews with a missing or unreadable "
                f"'{completion_col}' flag",
            )

    records = []
    for keys, positions in group_positions(design.data, by):
        diag: Dict = {"n_rows": int(len(positions))}
        if mode is CpueMode.RATIO_OF_MEANS:
            records.append(estimator.complete(keys, positions, diag))
            continue
        if mode is CpueMode.MEAN_OF_RATIOS:
            records.append(estimator.incomplete(keys, positions, diag))
            continue

        group_flags = flags[positions]
        known = ~np.isnan(group_flags)
        diag["n_completion_na"] = int((~known).sum())
        positions, group_flags = positions[known], group_flags[known]
        if len(positions) == 0:
            gap = ComputationGap("no_completion_flags", "every interview lacks a completion flag")
            records.append(EstimateRecord.gap(keys, gap, 0, f"cpue_auto:{response}", diag))
            continue
        completeness = classify_completeness(group_flags)
        diag["completeness"] = completeness.value
        if completeness is TripCompleteness.COMPLETE:
            records.append(estimator.complete(keys, positions, diag))
        elif completeness is TripCompleteness.INCOMPLETE:
            records.append(estimator.incomplete(keys, positions, diag))
        else:
            records.append(estimator.mixed(keys, positions, group_flags, diag))

    if tally.mor_input:
        rate = tally.truncated / tally.mor_input
        logger.info(
            "Mean-of-ratios: %d of %d trips truncated below %.2f h, %d non-finite ratios",
            tally.truncated, tally.mor_input, min_trip_hours, tally.nonfinite,
        )
        if rate > TRUNCATION_WARNING_RATE:
            warn_data_quality(
                logger,
                f"Truncated {tally.truncated} of {tally.mor_input} trips ({rate:.0%}) "
                f"shorter than {min_trip_hours} h",
            )
        if tally.nonfinite:
            warn_data_quality(
                logger,
                f"Excluded {tally.nonfinite} trips with non-finite catch rates",
            )
    if tally.planned_corrected:
        warn_data_quality(
            logger,
            f"Planned trip effort below observed effort for {tally.planned_corrected} "
            f"trips; replaced by observed effort",
        )
    return records_to_frame(records, by)


def estimate_cpue_roving(
    design: SurveyDesign,
    by: Sequence[str] = (),
    response: str = DEFAULT_RESPONSE,
    effort_col: str = DEFAULT_EFFORT_COL,
    min_trip_hours: float = DEFAULT_MIN_TRIP_HOURS,
    length_bias_correction="none",
    planned_effort_col: str = DEFAULT_PLANNED_EFFORT_COL,
    conf_level: float = DEFAULT_CONF_LEVEL,
) -> pd.DataFrame:
    """Mean-of-ratios CPUE for incomplete (roving) trips."""
    return estimate_cpue(
        design,
        by=by,
        response=response,
        effort_col=effort_col,
        mode=CpueMode.MEAN_OF_RATIOS,
        min_trip_hours=min_trip_hours,
        length_bias_correction=length_bias_correction,
        planned_effort_col=planned_effort_col,
        conf_level=conf_level,
    )
