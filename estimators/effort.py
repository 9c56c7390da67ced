"""
Angler-effort estimators.

Counts are first reduced to one effort value per day x group, then those
day-level totals are expanded and given a variance through a day-level
survey design (one PSU per day).  Four count-to-effort conversions:

    - instantaneous: mean(count) x total period minutes / 60;
    - progressive:   trapezoidal integral of count over time (minutes) / 60,
                     summed over roving passes;
    - busroute:      Horvitz-Thompson sum of count x route minutes / 60 / pi;
    - aerial:        instantaneous expansion of count / visibility x calibration,
                     each correction a scalar or a per-row column.

Zero counts are data.  NA counts are dropped and counted.  A group whose
day totals cannot be formed (a progressive pass with fewer than two distinct
time points) gets an NA row carrying a ``ComputationGap``.
"""

import logging
from functools import partial
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.integrate import trapezoid

from config import (
    COUNT_COL,
    DAY_ID_COL,
    DEFAULT_CONF_LEVEL,
    DEFAULT_EFFORT_BY,
    INCLUSION_PROB_COL,
    MIN_INCLUSION_PROB,
    MINUTES_COL_CANDIDATES,
    PASS_COL_CANDIDATES,
    ROUTE_MINUTES_COL_CANDIDATES,
    TIME_COL_CANDIDATES,
    TOTAL_MINUTES_COL_CANDIDATES,
)
from data.schemas import normalize_by, require_columns, resolve_column
from models.design import SurveyDesign
from models.errors import (
    ComputationGap,
    InputValidationError,
    check_conf_level,
    is_number,
    warn_data_quality,
)
from models.estimate import EstimateRecord, records_to_frame
from models.methods import EffortMethod
from survey.builders import build_simple_design
from survey.variance import group_positions, survey_total


logger = logging.getLogger(__name__)

EFFORT_DAY_COL = "effort_day"
N_COUNTS_COL = "n_counts"


# ---------------------------------------------------------------------------
# Count preparation
# ---------------------------------------------------------------------------

def _drop_na_counts(counts: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
    keep = counts[COUNT_COL].notna()
    n_dropped = int((~keep).sum())
    if n_dropped:
        logger.info("Dropped %d count rows with missing counts", n_dropped)
    return counts.loc[keep].reset_index(drop=True), n_dropped


def _time_to_minutes(times: pd.Series) -> np.ndarray:
    """Numeric times are taken as minutes; datetimes become minutes past midnight."""
    if pd.api.types.is_numeric_dtype(times):
        return times.to_numpy(dtype=float)
    if pd.api.types.is_datetime64_any_dtype(times):
        offset = times - times.dt.normalize()
        return offset.dt.total_seconds().to_numpy(dtype=float) / 60.0
    raise InputValidationError(
        f"Count times must be numeric minutes or datetimes, got dtype {times.dtype}",
        parameter=str(times.name),
        hint="convert clock times with pandas.to_datetime(...)",
    )


# ---------------------------------------------------------------------------
# Day x group totals
# ---------------------------------------------------------------------------

def _instantaneous_days(counts: pd.DataFrame, keys: List[str],
                        context: str = "instantaneous effort") -> Tuple[pd.DataFrame, Dict]:
    minutes_col = resolve_column(counts, MINUTES_COL_CANDIDATES, context)
    total_col = resolve_column(counts, TOTAL_MINUTES_COL_CANDIDATES, context, required=False)
    grouped = counts.groupby(keys, sort=True, dropna=False)
    days = grouped[COUNT_COL].agg(["mean", "size"]).reset_index()
    days = days.rename(columns={"mean": "__mean_count", "size": N_COUNTS_COL})
    if total_col is None:
        warn_data_quality(
            logger,
            f"{context.capitalize()}: no total-minutes column; using the sum of "
            f"'{minutes_col}' per day x group as total minutes",
        )
        minutes = grouped[minutes_col].sum()
        source = f"sum:{minutes_col}"
    else:
        minutes = grouped[total_col].first()
        source = total_col
    days[EFFORT_DAY_COL] = days["__mean_count"].to_numpy() * minutes.to_numpy(dtype=float) / 60.0
    return days.drop(columns="__mean_count"), {"total_minutes_source": source}


def _pass_integral(times: np.ndarray, values: np.ndarray) -> float:
    """Angler-hours under one pass, or NaN with fewer than two time points."""
    frame = pd.DataFrame({"t": times, "c": values}).groupby("t", sort=True)["c"].mean()
    if len(frame) < 2:
        return float("nan")
    return float(trapezoid(frame.to_numpy(), x=frame.index.to_numpy(dtype=float))) / 60.0


def _progressive_days(counts: pd.DataFrame, keys: List[str]) -> Tuple[pd.DataFrame, Dict]:
    time_col = resolve_column(counts, TIME_COL_CANDIDATES, "progressive effort")
    pass_col = resolve_column(counts, PASS_COL_CANDIDATES, "progressive effort", required=False)
    work = counts.assign(_minutes=_time_to_minutes(counts[time_col]))

    rows = []
    for key, sub in work.groupby(keys, sort=True, dropna=False):
        if not isinstance(key, tuple):
            key = (key,)
        passes = [sub] if pass_col is None else [p for _, p in sub.groupby(pass_col, sort=True)]
        integrals = [
            _pass_integral(p["_minutes"].to_numpy(), p[COUNT_COL].to_numpy(dtype=float))
            for p in passes
        ]
        n_short = sum(1 for v in integrals if not np.isfinite(v))
        row = dict(zip(keys, key))
        row[N_COUNTS_COL] = len(sub)
        row["n_passes"] = len(passes)
        row["n_short_passes"] = n_short
        row[EFFORT_DAY_COL] = float("nan") if n_short else float(np.sum(integrals))
        rows.append(row)
    days = pd.DataFrame(rows, columns=keys + [N_COUNTS_COL, "n_passes", "n_short_passes", EFFORT_DAY_COL])
    return days, {"pass_column": pass_col}


def _busroute_days(counts: pd.DataFrame, keys: List[str]) -> Tuple[pd.DataFrame, Dict]:
    route_col = resolve_column(counts, ROUTE_MINUTES_COL_CANDIDATES, "bus-route effort")
    require_columns(counts, [INCLUSION_PROB_COL], "bus-route effort")
    probs = counts[INCLUSION_PROB_COL].to_numpy(dtype=float)
    missing = ~np.isfinite(probs)
    n_missing = int(missing.sum())
    if n_missing:
        warn_data_quality(
            logger,
            f"Bus-route effort: dropped {n_missing} count rows with a missing "
            f"inclusion probability",
        )
        counts = counts.loc[~missing].reset_index(drop=True)
        probs = probs[~missing]
    out_of_range = (probs <= 0) | (probs > 1)
    n_clamped = int(out_of_range.sum())
    if n_clamped:
        warn_data_quality(
            logger,
            f"Bus-route effort: clamped {n_clamped} inclusion probabilities into (0, 1]",
        )
        probs = np.clip(probs, MIN_INCLUSION_PROB, 1.0)
    contrib = (
        counts[COUNT_COL].to_numpy(dtype=float)
        * counts[route_col].to_numpy(dtype=float) / 60.0 / probs
    )
    work = counts[keys].assign(**{EFFORT_DAY_COL: contrib})
    days = work.groupby(keys, sort=True, dropna=False)[EFFORT_DAY_COL].agg(["sum", "size"])
    days = days.rename(columns={"sum": EFFORT_DAY_COL, "size": N_COUNTS_COL}).reset_index()
    return days, {"n_clamped_inclusion_probs": n_clamped, "n_missing_inclusion_probs": n_missing}


def _correction_values(counts: pd.DataFrame, value, parameter: str) -> Tuple[np.ndarray, object]:
    """Per-row correction from a column name or a positive scalar."""
    if isinstance(value, str):
        require_columns(counts, [value], "aerial effort")
        return pd.to_numeric(counts[value], errors="coerce").to_numpy(dtype=float), value
    if not is_number(value) or not np.isfinite(value) or value <= 0:
        raise InputValidationError(
            f"{parameter} must be a positive number or a column name, got {value!r}",
            parameter=parameter,
            hint="use 1.0 for no correction",
        )
    return np.full(len(counts), float(value)), float(value)


def _aerial_days(counts: pd.DataFrame, keys: List[str], visibility_correction=1.0,
                 calibration_factor=1.0) -> Tuple[pd.DataFrame, Dict]:
    vis, vis_source = _correction_values(counts, visibility_correction, "visibility_correction")
    cal, cal_source = _correction_values(counts, calibration_factor, "calibration_factor")
    ok = np.isfinite(vis) & (vis > 0) & np.isfinite(cal) & (cal > 0)
    n_invalid = int((~ok).sum())
    if n_invalid:
        warn_data_quality(
            logger,
            f"Aerial effort: dropped {n_invalid} count rows with a missing or "
            f"non-positive correction",
        )
    kept = counts.loc[ok].reset_index(drop=True)
    adjusted = kept.assign(**{COUNT_COL: kept[COUNT_COL].to_numpy(dtype=float) / vis[ok] * cal[ok]})
    days, diag = _instantaneous_days(adjusted, keys, "aerial effort")
    diag.update({
        "visibility_correction": vis_source,
        "calibration_factor": cal_source,
        "n_invalid_corrections": n_invalid,
    })
    return days, diag


_DAY_BUILDERS = {
    EffortMethod.INSTANTANEOUS: _instantaneous_days,
    EffortMethod.PROGRESSIVE: _progressive_days,
    EffortMethod.BUSROUTE: _busroute_days,
    EffortMethod.AERIAL: _aerial_days,
}


# ---------------------------------------------------------------------------
# Expansion and variance
# ---------------------------------------------------------------------------

def _effort_design(days: pd.DataFrame, design: Optional[SurveyDesign], day_id: str) -> SurveyDesign:
    if design is None:
        return build_simple_design(days, cluster_var=day_id)
    return design.align_to(days, day_id)


def _estimate_from_days(
    days: pd.DataFrame,
    by: Sequence[str],
    design: Optional[SurveyDesign],
    day_id: str,
    method: EffortMethod,
    conf_level: float,
    extra: Dict,
) -> pd.DataFrame:
    days = days.reset_index(drop=True)
    eff_design = _effort_design(days, design, day_id)
    y = days[EFFORT_DAY_COL].to_numpy(dtype=float)
    label = f"effort_{method.value}"

    records = []
    for keys, positions in group_positions(days, by):
        sub = days.iloc[positions]
        n_counts = int(sub[N_COUNTS_COL].sum())
        diag = dict(extra)
        diag["n_days"] = int(sub[day_id].nunique())
        if "n_short_passes" in sub.columns and sub["n_short_passes"].sum() > 0:
            gap = ComputationGap(
                reason="insufficient_time_points",
                detail=f"{int(sub['n_short_passes'].sum())} pass(es) with fewer than "
                       f"two distinct time points",
            )
            records.append(EstimateRecord.gap(keys, gap, n_counts, label, diag))
            continue
        res = survey_total(eff_design, y, positions)
        if res.n == 0:
            gap = ComputationGap(reason="no_finite_effort", detail="no day total could be formed")
            records.append(EstimateRecord.gap(keys, gap, n_counts, label, diag))
            continue
        diag["variance_method"] = res.method
        records.append(EstimateRecord.from_estimate(
            keys, res.estimate, res.se, n_counts, label, conf_level, diag,
        ))
    n_gaps = sum(1 for r in records if r.is_gap)
    if n_gaps:
        logger.info("%s effort: %d group(s) reported as NA", method.value, n_gaps)
    return records_to_frame(records, by)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def estimate_effort(
    counts: pd.DataFrame,
    method="instantaneous",
    by: Sequence[str] = DEFAULT_EFFORT_BY,
    design: Optional[SurveyDesign] = None,
    day_id: str = DAY_ID_COL,
    conf_level: float = DEFAULT_CONF_LEVEL,
    visibility_correction=None,
    calibration_factor=None,
) -> pd.DataFrame:
    """Estimate angler-hours of effort per group from counts.

    Args:
        counts: Count rows with ``count``, the day id, the *by* columns and
            the method's time columns.
        method: "instantaneous", "progressive", "busroute" or "aerial".
        by: Grouping columns for the output rows.
        design: Day-level design (see ``build_day_design``) whose rows are
            unique on *day_id*.  Without one, every counted day has weight 1
            and is its own PSU.
        day_id: Day identifier shared by the counts and the design.
        conf_level: Wald interval level.
        visibility_correction: Aerial only.  Fraction of anglers visible from
            the air, as a scalar or a column name; counts are divided by it.
            Defaults to 1.
        calibration_factor: Aerial only.  Ground-truth calibration, as a
            scalar or a column name; counts are multiplied by it.  Defaults to 1.

    Returns:
        One row per group: keys, estimate, standard_error, ci_low, ci_high,
        sample_size (count rows used), method_label, diagnostics.

    Raises:
        InputValidationError: Missing columns, unknown method, bad
            confidence level, aerial corrections given to another method or
            invalid, or counts that cannot be aligned to *design*.
    """
    method = EffortMethod.parse(method, "method")
    check_conf_level(conf_level)
    by = normalize_by(by)
    require_columns(counts, [COUNT_COL, day_id] + list(by), f"{method.value} effort")

    builder = _DAY_BUILDERS[method]
    if method is EffortMethod.AERIAL:
        builder = partial(
            builder,
            visibility_correction=1.0 if visibility_correction is None else visibility_correction,
            calibration_factor=1.0 if calibration_factor is None else calibration_factor,
        )
    elif visibility_correction is not None or calibration_factor is not None:
        raise InputValidationError(
            f"Visibility and calibration corrections apply to aerial counts only, "
            f"not {method.value}",
            parameter="visibility_correction",
            hint="use method='aerial' or drop the corrections",
        )

    clean, n_na = _drop_na_counts(counts)
    keys = list(normalize_by((day_id,) + by))
    days, extra = builder(clean, keys)
    extra["n_na_counts_dropped"] = n_na
    logger.info(
        "%s effort: %d count rows -> %d day x group totals",
        method.value, len(clean), len(days),
    )
    return _estimate_from_days(days, by, design, day_id, method, conf_level, extra)


def est_effort_instantaneous(counts: pd.DataFrame, **kwargs) -> pd.DataFrame:
    """Instantaneous-count effort (see ``estimate_effort``)."""
    return estimate_effort(counts, method=EffortMethod.INSTANTANEOUS, **kwargs)


def est_effort_progressive(counts: pd.DataFrame, **kwargs) -> pd.DataFrame:
    """Progressive-count effort (see ``estimate_effort``)."""
    return estimate_effort(counts, method=EffortMethod.PROGRESSIVE, **kwargs)


def est_effort_busroute(counts: pd.DataFrame, **kwargs) -> pd.DataFrame:
    """Bus-route effort (see ``estimate_effort``)."""
    return estimate_effort(counts, method=EffortMethod.BUSROUTE, **kwargs)


def est_effort_aerial(counts: pd.DataFrame, **kwargs) -> pd.DataFrame:
    """Aerial-count effort (see ``estimate_effort``)."""
    return estimate_effort(counts, method=EffortMethod.AERIAL, **kwargs)
