"""
Estimate records and the tabular output schema.

Every estimator produces one ``EstimateRecord`` per group and hands the list
to ``records_to_frame``.  Records are immutable and built fresh on each call.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import norm

from models.errors import GAP_KEY, ComputationGap


RESULT_COLUMNS = [
    "estimate",
    "standard_error",
    "ci_low",
    "ci_high",
    "sample_size",
    "method_label",
    "diagnostics",
]


def z_critical(conf_level: float) -> float:
    """Two-sided standard-normal critical value for *conf_level*."""
    return float(norm.ppf(1.0 - (1.0 - conf_level) / 2.0))


def wald_interval(estimate: float, se: float, conf_level: float) -> Tuple[float, float]:
    """Normal-approximation interval ``estimate +/- z * se``.

    Returns (nan, nan) when either input is not finite.
    """
    if not (np.isfinite(estimate) and np.isfinite(se)):
        return float("nan"), float("nan")
    half = z_critical(conf_level) * se
    return estimate - half, estimate + half


@dataclass(frozen=True)
class EstimateRecord:
    """One output row: a point estimate with its uncertainty for one group."""

    keys: Tuple[Tuple[str, Any], ...]
    estimate: float
    standard_error: float
    ci_low: float
    ci_high: float
    sample_size: int
    method_label: str
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_estimate(
        cls,
        keys: Dict[str, Any],
        estimate: float,
        se: float,
        sample_size: int,
        method_label: str,
        conf_level: float,
        diagnostics: Dict[str, Any] = None,
    ) -> "EstimateRecord":
        """Build a record with a Wald interval at *conf_level*."""
        ci_low, ci_high = wald_interval(estimate, se, conf_level)
        return cls(
            keys=tuple(keys.items()),
            estimate=float(estimate),
            standard_error=float(se),
            ci_low=float(ci_low),
            ci_high=float(ci_high),
            sample_size=int(sample_size),
            method_label=method_label,
            diagnostics=dict(diagnostics or {}),
        )

    @classmethod
    def gap(
        cls,
        keys: Dict[str, Any],
        gap: ComputationGap,
        sample_size: int,
        method_label: str,
        diagnostics: Dict[str, Any] = None,
    ) -> "EstimateRecord":
        """NA record for a group that could not be estimated."""
        diag = dict(diagnostics or {})
        diag[GAP_KEY] = gap.to_dict()
        nan = float("nan")
        return cls(
            keys=tuple(keys.items()),
            estimate=nan,
            standard_error=nan,
            ci_low=nan,
            ci_high=nan,
            sample_size=int(sample_size),
            method_label=method_label,
            diagnostics=diag,
        )

    @property
    def is_gap(self) -> bool:
        return GAP_KEY in self.diagnostics

    def to_dict(self) -> Dict[str, Any]:
        row = dict(self.keys)
        row.update({
            "estimate": self.estimate,
            "standard_error": self.standard_error,
            "ci_low": self.ci_low,
            "ci_high": self.ci_high,
            "sample_size": self.sample_size,
            "method_label": self.method_label,
            "diagnostics": self.diagnostics,
        })
        return row


def records_to_frame(records: List[EstimateRecord], by: Sequence[str]) -> pd.DataFrame:
    """Collect records into the standard output table.

    Columns are the grouping keys in *by* order followed by ``RESULT_COLUMNS``.
    """
    columns = list(by) + RESULT_COLUMNS
    if not records:
        return pd.DataFrame(columns=columns)
    frame = pd.DataFrame([r.to_dict() for r in records])
    frame["sample_size"] = frame["sample_size"].astype(int)
    return frame[columns]
