"""
Total harvest as effort x CPUE, with delta-method variance.

    H = E * C
    Var(H) ~= C^2 Var(E) + E^2 Var(C) + 2 E C Cov(E, C)

Effort and CPUE tables are joined on every ``by`` key with an outer join.
A stratum present in only one table gets an NA harvest row with an
``unmatched_stratum`` gap; no row is dropped.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from config import DEFAULT_CONF_LEVEL, DEFAULT_RESPONSE
from data.schemas import normalize_by, require_columns
from models.errors import (
    ComputationGap,
    InputValidationError,
    check_conf_level,
    is_number,
    warn_data_quality,
)
from models.estimate import EstimateRecord, records_to_frame
from models.methods import VarianceMode


logger = logging.getLogger(__name__)

_INPUT_COLUMNS = ["estimate", "standard_error"]


@dataclass(frozen=True)
class DeltaProduct:
    """Product of two estimates and its first-order variance."""

    estimate: float
    variance: float
    covariance: float

    @property
    def se(self) -> float:
        if not np.isfinite(self.variance) or self.variance < 0:
            return float("nan")
        return float(np.sqrt(self.variance))


def delta_method_product(
    effort: float,
    effort_se: float,
    cpue: float,
    cpue_se: float,
    covariance: float = 0.0,
) -> DeltaProduct:
    """Delta-method variance of ``effort * cpue``.

    Args:
        effort: Effort estimate E.
        effort_se: Standard error of E.
        cpue: CPUE estimate C.
        cpue_se: Standard error of C.
        covariance: Cov(E, C); 0 for independent estimates.

    Returns:
        DeltaProduct with ``estimate = E * C`` and
        ``variance = C^2 Var(E) + E^2 Var(C) + 2 E C Cov(E, C)``.
    """
    var_e = effort_se ** 2
    var_c = cpue_se ** 2
    variance = cpue ** 2 * var_e + effort ** 2 * var_c + 2.0 * effort * cpue * covariance
    return DeltaProduct(estimate=effort * cpue, variance=variance, covariance=covariance)


def _covariance_rule(mode: VarianceMode, correlation, covariance):
    """Validate the variance options; return (correlation, covariance) to apply."""
    if mode is VarianceMode.INDEPENDENT:
        if correlation is not None or covariance is not None:
            raise InputValidationError(
                "Independent variance mode fixes Cov(effort, CPUE) = 0; "
                "a correlation or covariance was also given",
                parameter="variance_mode",
                hint="use variance_mode='correlated' to supply a covariance",
            )
        return None, 0.0
    if correlation is not None and covariance is not None:
        raise InputValidationError(
            "Give either correlation or covariance, not both",
            parameter="correlation",
            hint="drop one of the two options",
        )
    if correlation is None and covariance is None:
        raise InputValidationError(
            "Correlated variance mode needs a correlation or a covariance",
            parameter="correlation",
            hint="pass correlation=<value in [-1, 1]> or covariance=<value>",
        )
    if correlation is not None:
        if not is_number(correlation) or not -1.0 <= correlation <= 1.0:
            raise InputValidationError(
                f"correlation must be a number in [-1, 1], got {correlation!r}",
                parameter="correlation",
                hint="estimate the correlation from paired replicate estimates",
            )
        return float(correlation), None
    if not is_number(covariance) or not np.isfinite(covariance):
        raise InputValidationError(
            f"covariance must be a finite number, got {covariance!r}",
            parameter="covariance",
        )
    return None, float(covariance)


def _join_estimates(effort_est: pd.DataFrame, cpue_est: pd.DataFrame, by) -> pd.DataFrame:
    cols = ["estimate", "standard_error", "sample_size"]
    left = effort_est.reindex(columns=list(by) + cols)
    right = cpue_est.reindex(columns=list(by) + cols)
    if not by:
        if len(effort_est) != 1 or len(cpue_est) != 1:
            raise InputValidationError(
                f"Without 'by' both inputs must have exactly one row "
                f"(effort: {len(effort_est)}, cpue: {len(cpue_est)})",
                parameter="by",
                hint="pass the grouping columns shared by both tables",
            )
        joined = pd.concat(
            [left.add_suffix("_effort").reset_index(drop=True),
             right.add_suffix("_cpue").reset_index(drop=True)],
            axis=1,
        )
        joined["_merge"] = "both"
        return joined

    for table, label in ((effort_est, "effort_est"), (cpue_est, "cpue_est")):
        if table.duplicated(subset=list(by)).any():
            raise InputValidationError(
                f"{label} has repeated rows for the same {list(by)} keys",
                parameter="by",
                hint="include every grouping column of the estimate in 'by'",
            )
    return left.merge(
        right, on=list(by), how="outer", suffixes=("_effort", "_cpue"),
        indicator=True, sort=True,
    )


def _size(row, column) -> Optional[int]:
    value = row.get(column, np.nan)
    if value is None or pd.isna(value):
        return None
    return int(value)


def estimate_total_harvest(
    effort_est: pd.DataFrame,
    cpue_est: pd.DataFrame,
    by: Sequence[str] = (),
    variance_mode="independent",
    correlation: Optional[float] = None,
    covariance: Optional[float] = None,
    response: str = DEFAULT_RESPONSE,
    conf_level: float = DEFAULT_CONF_LEVEL,
) -> pd.DataFrame:
    """Combine effort and CPUE estimates into total harvest per stratum.

    Args:
        effort_est: Output of ``estimate_effort``.
        cpue_est: Output of ``estimate_cpue``.
        by: Keys to join on (must be present in both tables).
        variance_mode: "independent" (Cov = 0, recorded in diagnostics) or
            "correlated".
        correlation: Correlation of E and C, correlated mode only;
            Cov = rho * SE(E) * SE(C).
        covariance: Cov(E, C) directly, correlated mode only.
        response: Catch column the CPUE was computed from (method label).
        conf_level: Wald interval level.

    Returns:
        One row per key combination found in either input.

    Raises:
        InputValidationError: Missing columns, contradictory variance
            options, duplicated keys, or multi-row inputs without ``by``.
    """
    mode = VarianceMode.parse(variance_mode, "variance_mode")
    check_conf_level(conf_level)
    by = normalize_by(by)
    require_columns(effort_est, list(by) + _INPUT_COLUMNS, "estimate_total_harvest (effort_est)")
    require_columns(cpue_est, list(by) + _INPUT_COLUMNS, "estimate_total_harvest (cpue_est)")
    rho, cov_fixed = _covariance_rule(mode, correlation, covariance)

    joined = _join_estimates(effort_est, cpue_est, by)
    label = f"product:{response}:{mode.value}"

    records = []
    n_unmatched = 0
    for _, row in joined.iterrows():
        keys = {k: row[k] for k in by}
        n_e = _size(row, "sample_size_effort")
        n_c = _size(row, "sample_size_cpue")
        sizes = [n for n in (n_e, n_c) if n is not None]
        sample_size = min(sizes) if sizes else 0
        diag = {"variance_mode": mode.value}
        if mode is VarianceMode.INDEPENDENT:
            diag["covariance_asserted_zero"] = True

        if row["_merge"] != "both":
            n_unmatched += 1
            side = "CPUE" if row["_merge"] == "left_only" else "effort"
            gap = ComputationGap("unmatched_stratum", f"no {side} estimate for this stratum")
            records.append(EstimateRecord.gap(keys, gap, sample_size, label, diag))
            continue

        e, se_e = float(row["estimate_effort"]), float(row["standard_error_effort"])
        c, se_c = float(row["estimate_cpue"]), float(row["standard_error_cpue"])
        if not (np.isfinite(e) and np.isfinite(c)):
            gap = ComputationGap("missing_input_estimate", "effort or CPUE estimate is NA")
            records.append(EstimateRecord.gap(keys, gap, sample_size, label, diag))
            continue

        if rho is not None:
            cov = rho * se_e * se_c
            diag["correlation"] = rho
        else:
            cov = cov_fixed
        diag["covariance"] = cov
        product = delta_method_product(e, se_e, c, se_c, cov)
        if np.isfinite(product.variance) and product.variance < 0:
            diag["negative_variance"] = True
        records.append(EstimateRecord.from_estimate(
            keys, product.estimate, product.se, sample_size, label, conf_level, diag,
        ))

    if n_unmatched:
        warn_data_quality(
            logger,
            f"{n_unmatched} stratum row(s) matched in only one of effort / CPUE; "
            f"reported as NA harvest",
        )
    return records_to_frame(records, by)
