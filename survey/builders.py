"""
Survey design builders.

Turn interview / count / calendar tables into a ``SurveyDesign``:

    - access-point designs weight each interview by its stratum's
      target-to-actual sampling ratio (or inverse inclusion probability);
    - roving designs expand interviewed party-hours to count-based effort;
    - day designs treat sampled days as PSUs within day-type strata;
    - simple designs carry equal or supplied weights.

Rows whose weight cannot be computed (stratum absent from the calendar,
zero actual samples) are dropped and counted.  If no row gets a finite
weight the build fails: that is a stratum mismatch, not a data gap.
"""

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from config import (
    ACTUAL_SAMPLE_COL,
    BLOCK_MINUTES_COL_CANDIDATES,
    COUNT_COL,
    DAY_ID_COL,
    DEFAULT_ACCESS_STRATA,
    DEFAULT_EFFORT_COL,
    DEFAULT_PARTY_SIZE_COL,
    DEFAULT_ROVING_STRATA,
    EFFORT_EXPANSION_COL,
    INCLUSION_PROB_COL,
    MINUTES_COL_CANDIDATES,
    SAMPLED_FLAG_COL,
    TARGET_SAMPLE_COL,
)
from data.schemas import normalize_by, require_columns, resolve_column
from models.design import SurveyDesign
from models.errors import InputValidationError, warn_data_quality
from models.methods import WeightMethod


logger = logging.getLogger(__name__)

_POS = "__row_position"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def stratum_codes(frame: pd.DataFrame, strata_vars: Sequence[str]) -> Optional[np.ndarray]:
    """Integer code per row for the combination of *strata_vars*."""
    if not strata_vars:
        return None
    return frame.groupby(list(strata_vars), sort=True, dropna=False).ngroup().to_numpy()


def _lookup_by_strata(
    frame: pd.DataFrame,
    table: pd.DataFrame,
    strata_vars: Sequence[str],
    value_col: str,
) -> np.ndarray:
    """Per-row *value_col* from a one-row-per-stratum *table* (NaN if absent)."""
    left = frame[list(strata_vars)].copy()
    left[_POS] = np.arange(len(frame))
    merged = left.merge(table[list(strata_vars) + [value_col]], on=list(strata_vars), how="left")
    merged = merged.sort_values(_POS)
    return merged[value_col].to_numpy(dtype=float)


def _finalize(
    data: pd.DataFrame,
    weights: np.ndarray,
    strata_vars: Sequence[str],
    design_type: str,
    cluster_var: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> SurveyDesign:
    """Drop rows without a usable weight, then build the design."""
    weights = np.asarray(weights, dtype=float)
    good = np.isfinite(weights) & (weights >= 0)
    n_bad = int((~good).sum())
    if n_bad == len(weights):
        raise InputValidationError(
            f"No {design_type} row received a finite weight "
            f"({n_bad} rows checked); the data strata do not match the calendar",
            parameter="strata_vars",
            hint="check that every stratum combination in the data appears in "
                 "the calendar with a non-zero actual sample",
        )
    logger.info(
        "%s design: %d rows, %d dropped for missing or non-finite weights",
        design_type, len(weights), n_bad,
    )
    if n_bad:
        warn_data_quality(
            logger,
            f"Dropped {n_bad} of {len(weights)} rows with missing or non-finite "
            f"design weights (stratum absent from calendar or zero actual sample)",
        )
    kept = data.reset_index(drop=True).loc[good].reset_index(drop=True)
    meta = dict(metadata or {})
    meta["n_input_rows"] = int(len(weights))
    meta["n_dropped_weight_rows"] = n_bad
    clusters = None
    if cluster_var is not None:
        clusters = kept.groupby(cluster_var, sort=True, dropna=False).ngroup().to_numpy()
    return SurveyDesign(
        data=kept,
        weights=weights[good],
        strata=stratum_codes(kept, strata_vars),
        clusters=clusters,
        strata_vars=tuple(strata_vars),
        design_type=design_type,
        metadata=meta,
    )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def build_access_design(
    interviews: pd.DataFrame,
    calendar: pd.DataFrame,
    strata_vars: Sequence[str] = DEFAULT_ACCESS_STRATA,
    weight_method="standard",
    cluster_var: Optional[str] = None,
) -> SurveyDesign:
    """Access-point design: interviews at fixed sites, complete exit coverage.

    Base weight per stratum is ``sum(target_sample) / sum(actual_sample)``
    from the calendar, or ``1 / inclusion_prob`` when the calendar carries
    inclusion probabilities instead.  The base weight is multiplied by the
    interview's ``effort_expansion`` when that column exists.  With
    ``weight_method="post_stratify"`` weights are rescaled so each stratum
    sums to its calendar target.

    Args:
        interviews: Interview rows.
        calendar: Sampling frame with one or more rows per stratum.
        strata_vars: Stratification columns present in both tables.
        weight_method: "standard" or "post_stratify".
        cluster_var: Optional PSU column in *interviews*.

    Returns:
        SurveyDesign over the interviews.

    Raises:
        InputValidationError: Missing columns, or no interview matches a
            calendar stratum.
    """
    strata_vars = normalize_by(strata_vars)
    method = WeightMethod.parse(weight_method, "weight_method")
    require_columns(interviews, strata_vars, "build_access_design (interviews)")
    require_columns(calendar, strata_vars, "build_access_design (calendar)")
    if cluster_var is not None:
        require_columns(interviews, [cluster_var], "build_access_design (interviews)")

    grouped = calendar.groupby(list(strata_vars), sort=True, dropna=False)
    if TARGET_SAMPLE_COL in calendar.columns and ACTUAL_SAMPLE_COL in calendar.columns:
        table = grouped[[TARGET_SAMPLE_COL, ACTUAL_SAMPLE_COL]].sum().reset_index()
        with np.errstate(divide="ignore", invalid="ignore"):
            table["__base"] = (
                table[TARGET_SAMPLE_COL].to_numpy(dtype=float)
                / table[ACTUAL_SAMPLE_COL].to_numpy(dtype=float)
            )
    elif INCLUSION_PROB_COL in calendar.columns:
        table = grouped[INCLUSION_PROB_COL].first().reset_index()
        probs = table[INCLUSION_PROB_COL].to_numpy(dtype=float)
        with np.errstate(divide="ignore"):
            table["__base"] = np.where(probs > 0, 1.0 / np.where(probs > 0, probs, 1.0), np.inf)
    else:
        raise InputValidationError(
            "Calendar needs either target/actual sample columns or inclusion probabilities",
            parameter=TARGET_SAMPLE_COL,
            hint=f"add '{TARGET_SAMPLE_COL}' and '{ACTUAL_SAMPLE_COL}', "
                 f"or '{INCLUSION_PROB_COL}'",
        )

    weights = _lookup_by_strata(interviews, table, strata_vars, "__base")
    if EFFORT_EXPANSION_COL in interviews.columns:
        weights = weights * interviews[EFFORT_EXPANSION_COL].to_numpy(dtype=float)

    if method is WeightMethod.POST_STRATIFY:
        if TARGET_SAMPLE_COL not in table.columns:
            raise InputValidationError(
                "Post-stratification needs calendar target totals",
                parameter=TARGET_SAMPLE_COL,
                hint="use weight_method='standard' with inclusion probabilities",
            )
        codes = stratum_codes(interviews, strata_vars)
        finite = np.where(np.isfinite(weights), weights, 0.0)
        sums = pd.Series(finite).groupby(codes).transform("sum").to_numpy()
        targets = _lookup_by_strata(interviews, table, strata_vars, TARGET_SAMPLE_COL)
        with np.errstate(divide="ignore", invalid="ignore"):
            weights = weights * targets / sums

    uncovered = len(table) - len(
        interviews[list(strata_vars)].drop_duplicates().merge(
            table[list(strata_vars)], on=list(strata_vars), how="inner"
        )
    )
    if uncovered:
        logger.info("%d calendar strata have no interviews", uncovered)

    return _finalize(
        interviews, weights, strata_vars, "access_point",
        cluster_var=cluster_var,
        metadata={"weight_method": method.value, "n_calendar_strata_without_data": int(uncovered)},
    )


def build_roving_design(
    interviews: pd.DataFrame,
    counts: pd.DataFrame,
    calendar: pd.DataFrame,
    strata_vars: Sequence[str] = DEFAULT_ROVING_STRATA,
    effort_col: str = DEFAULT_EFFORT_COL,
    party_size_col: str = DEFAULT_PARTY_SIZE_COL,
) -> SurveyDesign:
    """Roving design: expand interviewed party-hours to count-based effort.

    Stratum effort is ``mean(count) * block minutes / 60`` from the counts
    (sum of interval minutes when no block length is recorded).  Each
    interview in stratum h gets weight
    ``E_h / sum_h(hours_fished * party_size)`` so the weighted party-hours
    of the stratum reproduce its count-based effort.  Only strata listed in
    the calendar receive weights.
    """
    strata_vars = normalize_by(strata_vars)
    require_columns(interviews, list(strata_vars) + [effort_col], "build_roving_design (interviews)")
    require_columns(counts, list(strata_vars) + [COUNT_COL], "build_roving_design (counts)")
    require_columns(calendar, strata_vars, "build_roving_design (calendar)")
    minutes_col = resolve_column(counts, MINUTES_COL_CANDIDATES, "build_roving_design (counts)")
    total_col = resolve_column(
        counts, BLOCK_MINUTES_COL_CANDIDATES, "build_roving_design (counts)", required=False,
    )

    grouped = counts.groupby(list(strata_vars), sort=True, dropna=False)
    effort = grouped[COUNT_COL].mean().rename("__mean_count").reset_index()
    if total_col is not None:
        minutes = grouped[total_col].first()
    else:
        minutes = grouped[minutes_col].sum()
    effort["__hours"] = minutes.to_numpy(dtype=float) / 60.0
    effort["__effort"] = effort["__mean_count"] * effort["__hours"]
    frame_strata = calendar[list(strata_vars)].drop_duplicates()
    effort = effort.merge(frame_strata, on=list(strata_vars), how="inner")

    if party_size_col in interviews.columns:
        party = interviews[party_size_col].to_numpy(dtype=float)
    else:
        party = np.ones(len(interviews))
    party_hours = interviews[effort_col].to_numpy(dtype=float) * party
    codes = stratum_codes(interviews, strata_vars)
    observed = pd.Series(party_hours).groupby(codes).transform("sum").to_numpy()

    stratum_effort = _lookup_by_strata(interviews, effort, strata_vars, "__effort")
    with np.errstate(divide="ignore", invalid="ignore"):
        weights = stratum_effort / observed

    return _finalize(
        interviews, weights, strata_vars, "roving",
        metadata={"n_effort_strata": int(len(effort))},
    )


def build_day_design(
    calendar: pd.DataFrame,
    day_id: str = DAY_ID_COL,
    strata_vars: Sequence[str] = ("day_type",),
    sampled_col: str = SAMPLED_FLAG_COL,
) -> SurveyDesign:
    """Day-PSU design for effort estimation.

    One row per calendar day.  Sampled days get weight ``N_h / n_h`` (days in
    the stratum over sampled days in the stratum), or ``1 / inclusion_prob``
    when the calendar carries inclusion probabilities.  Without a sampled
    flag every listed day counts as sampled.

    Raises:
        InputValidationError: Missing columns or duplicated day ids.
    """
    strata_vars = normalize_by(strata_vars)
    require_columns(calendar, [day_id] + list(strata_vars), "build_day_design")
    if calendar[day_id].duplicated().any():
        raise InputValidationError(
            f"Calendar has repeated values of '{day_id}'",
            parameter=day_id,
            hint="collapse the calendar to one row per day before building a day design",
        )

    frame = calendar.reset_index(drop=True)
    if sampled_col in frame.columns:
        sampled = frame[sampled_col].fillna(False).astype(bool).to_numpy()
    else:
        sampled = np.ones(len(frame), dtype=bool)

    if INCLUSION_PROB_COL in frame.columns:
        probs = frame[INCLUSION_PROB_COL].to_numpy(dtype=float)
        with np.errstate(divide="ignore"):
            weights = np.where(probs > 0, 1.0 / np.where(probs > 0, probs, 1.0), np.inf)
    else:
        codes = stratum_codes(frame, strata_vars)
        if codes is None:
            codes = np.zeros(len(frame), dtype=int)
        big_n = pd.Series(1.0, index=frame.index).groupby(codes).transform("sum").to_numpy()
        small_n = pd.Series(sampled.astype(float)).groupby(codes).transform("sum").to_numpy()
        with np.errstate(divide="ignore", invalid="ignore"):
            weights = big_n / small_n

    n_unsampled = int((~sampled).sum())
    logger.info("day design: %d sampled of %d calendar days", int(sampled.sum()), len(frame))
    return _finalize(
        frame.loc[sampled], weights[sampled], strata_vars, "day",
        metadata={"n_frame_days": int(len(frame)), "n_unsampled_days": n_unsampled},
    )


def build_simple_design(
    data: pd.DataFrame,
    strata_vars: Sequence[str] = (),
    cluster_var: Optional[str] = None,
    weight_col: Optional[str] = None,
) -> SurveyDesign:
    """Equal-weight (or column-weighted) design, optionally stratified / clustered."""
    strata_vars = normalize_by(strata_vars)
    cols = list(strata_vars)
    if cluster_var is not None:
        cols.append(cluster_var)
    if weight_col is not None:
        cols.append(weight_col)
    require_columns(data, cols, "build_simple_design")
    if weight_col is None:
        weights = np.ones(len(data))
    else:
        weights = data[weight_col].to_numpy(dtype=float)
    return _finalize(data, weights, strata_vars, "simple", cluster_var=cluster_var)
