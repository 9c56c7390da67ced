"""
Design-based variance engine.

Estimates totals, means and ratios over a domain (a subset of rows) of a
``SurveyDesign`` and their variances, either by Taylor linearization over
stratified PSUs or from replicate weights when the design carries them.

Domain estimation keeps the whole design: rows outside the domain contribute
zero to the influence values but still count as PSUs of their stratum, which
is what makes per-group standard errors design-consistent.

Single-PSU strata contribute zero to the linearization variance (the
certainty floor rule).  A ratio over a single observation therefore has a
standard error of exactly 0.0.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from models.design import SurveyDesign


@dataclass(frozen=True)
class VarianceResult:
    """Point estimate and variance for one domain."""

    estimate: float
    variance: float
    n: int
    method: str

    @property
    def se(self) -> float:
        if not np.isfinite(self.variance):
            return float("nan")
        return float(np.sqrt(max(self.variance, 0.0)))


_NAN_RESULT = (float("nan"), float("nan"))


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def group_positions(
    frame: pd.DataFrame,
    by: Sequence[str],
) -> List[Tuple[dict, np.ndarray]]:
    """Split *frame* rows into groups.

    Returns:
        List of ``(keys, positions)`` in sorted key order, where *keys* maps
        each column in *by* to the group value and *positions* are integer
        row positions.  With an empty *by* there is a single group holding
        every row.
    """
    frame = frame.reset_index(drop=True)
    if not by:
        return [({}, np.arange(len(frame)))]
    groups = []
    for key, sub in frame.groupby(list(by), sort=True, dropna=False):
        if not isinstance(key, tuple):
            key = (key,)
        groups.append((dict(zip(by, key)), sub.index.to_numpy()))
    return groups


def domain_mask(n: int, positions: Optional[np.ndarray]) -> np.ndarray:
    """Boolean mask of length *n* that is True at *positions*."""
    if positions is None:
        return np.ones(n, dtype=bool)
    mask = np.zeros(n, dtype=bool)
    mask[np.asarray(positions, dtype=int)] = True
    return mask


# ---------------------------------------------------------------------------
# Variance primitives
# ---------------------------------------------------------------------------

def linearized_variance(design: SurveyDesign, z: np.ndarray) -> float:
    """With-replacement variance of a total of influence values *z*.

    ``Var = sum_h n_h / (n_h - 1) * sum_j (z_hj - mean_h)^2`` where ``z_hj``
    are PSU totals within stratum h.  Strata with one PSU contribute 0.
    """
    psu = pd.DataFrame({
        "h": design.stratum_codes(),
        "j": design.psu_codes(),
        "z": np.asarray(z, dtype=float),
    })
    totals = psu.groupby(["h", "j"], sort=True)["z"].sum().reset_index()
    by_stratum = totals.groupby("h")["z"]
    n_h = by_stratum.transform("count").to_numpy()
    dev = totals["z"].to_numpy() - by_stratum.transform("mean").to_numpy()
    factor = np.where(n_h > 1, n_h / np.maximum(n_h - 1, 1), 0.0)
    return float(np.sum(factor * dev ** 2))


def replicate_variance(design: SurveyDesign, theta: float, theta_r: np.ndarray) -> float:
    """``scale * sum_r rscale_r * (theta_r - theta)^2`` over finite replicates."""
    theta_r = np.asarray(theta_r, dtype=float)
    ok = np.isfinite(theta_r)
    if not np.any(ok):
        return float("nan")
    rscales = np.asarray(design.replicate_rscales)[ok]
    return float(design.replicate_scale * np.sum(rscales * (theta_r[ok] - theta) ** 2))


def _method_tag(design: SurveyDesign) -> str:
    if design.has_replicates:
        return f"replicate:{design.replicate_method}"
    return "linearization"


def _usable(design: SurveyDesign, positions, *columns: np.ndarray) -> np.ndarray:
    mask = domain_mask(design.n_rows, positions)
    for col in columns:
        mask &= np.isfinite(col)
    return mask


# ---------------------------------------------------------------------------
# Estimators
# ---------------------------------------------------------------------------

def survey_total(
    design: SurveyDesign,
    y,
    positions: Optional[np.ndarray] = None,
) -> VarianceResult:
    """Weighted domain total ``sum w_i y_i`` and its variance.

    Rows with non-finite *y* are left out of the domain.
    """
    y = np.asarray(y, dtype=float)
    d = _usable(design, positions, y)
    n = int(d.sum())
    if n == 0:
        return VarianceResult(*_NAN_RESULT, n=0, method=_method_tag(design))

    yd = np.where(d, y, 0.0)
    w = np.asarray(design.weights)
    total = float(np.sum(w * yd))

    if design.has_replicates:
        theta_r = design.replicate_weights.T @ yd
        var = replicate_variance(design, total, theta_r)
    else:
        var = linearized_variance(design, w * yd)
    return VarianceResult(estimate=total, variance=var, n=n, method=_method_tag(design))


def survey_ratio(
    design: SurveyDesign,
    y,
    x,
    positions: Optional[np.ndarray] = None,
) -> VarianceResult:
    """Weighted domain ratio ``sum w y / sum w x`` and its variance.

    Linearized influence values are ``w_i (y_i - R x_i) / X``.  A domain whose
    weighted denominator is zero yields NaN.
    """
    y = np.asarray(y, dtype=float)
    x = np.asarray(x, dtype=float)
    d = _usable(design, positions, y, x)
    n = int(d.sum())
    method = _method_tag(design)
    if n == 0:
        return VarianceResult(*_NAN_RESULT, n=0, method=method)

    yd = np.where(d, y, 0.0)
    xd = np.where(d, x, 0.0)
    w = np.asarray(design.weights)
    big_y = float(np.sum(w * yd))
    big_x = float(np.sum(w * xd))
    if big_x == 0.0:
        return VarianceResult(*_NAN_RESULT, n=n, method=method)
    ratio = big_y / big_x

    if design.has_replicates:
        rep = design.replicate_weights
        num = rep.T @ yd
        den = rep.T @ xd
        with np.errstate(divide="ignore", invalid="ignore"):
            theta_r = np.where(den != 0.0, num / np.where(den != 0.0, den, 1.0), np.nan)
        var = replicate_variance(design, ratio, theta_r)
    else:
        z = w * (yd - ratio * xd) / big_x
        var = linearized_variance(design, z)
    return VarianceResult(estimate=ratio, variance=var, n=n, method=method)


def survey_mean(
    design: SurveyDesign,
    y,
    positions: Optional[np.ndarray] = None,
    case_weights=None,
) -> VarianceResult:
    """Weighted domain mean of *y*.

    Args:
        case_weights: Optional extra per-row multipliers applied on top of the
            design weights (e.g. length-bias correction weights).
    """
    y = np.asarray(y, dtype=float)
    if case_weights is None:
        b = np.ones_like(y)
    else:
        b = np.asarray(case_weights, dtype=float)
    with np.errstate(invalid="ignore"):
        return survey_ratio(design, b * y, b, positions)
