"""
Survey design data model.

A ``SurveyDesign`` owns a table of sampled rows (interviews, counts or days)
together with everything variance estimation needs: per-row inclusion
weights, stratum and primary-sampling-unit (PSU) codes, and optionally a
matrix of replicate weights.  The object is immutable: arrays are stored as
read-only copies and every transformation returns a new design.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from models.errors import InputValidationError


def _frozen(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True, eq=False)
class SurveyDesign:
    """Weighted sampling design over a table of rows.

    Args:
        data: Sampled rows (one row per interview, count or day).
        weights: Inclusion weights, shape (n,). Non-negative and finite.
        strata: Integer stratum code per row, shape (n,). None = unstratified.
        clusters: Integer PSU code per row, shape (n,). None = each row is
            its own PSU.
        strata_vars: Column names the strata were built from.
        design_type: Free-form tag ("access_point", "roving", "day", "simple").
        replicate_weights: Optional (n, R) matrix of replicate weights.
        replicate_method: "bootstrap" or "jackknife" when replicates exist.
        replicate_scale: Overall multiplier of the replicate variance.
        replicate_rscales: Per-replicate multipliers, shape (R,).
        metadata: Diagnostics recorded at build time (dropped rows etc.).
    """

    data: pd.DataFrame
    weights: np.ndarray
    strata: Optional[np.ndarray] = None
    clusters: Optional[np.ndarray] = None
    strata_vars: Tuple[str, ...] = ()
    design_type: str = "simple"
    replicate_weights: Optional[np.ndarray] = None
    replicate_method: Optional[str] = None
    replicate_scale: float = 1.0
    replicate_rscales: Optional[np.ndarray] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        n = len(self.data)
        weights = np.asarray(self.weights, dtype=float)
        if weights.shape != (n,):
            raise InputValidationError(
                f"weights has shape {weights.shape}, expected ({n},)",
                parameter="weights",
                hint="supply one weight per data row",
            )
        if not np.all(np.isfinite(weights)) or np.any(weights < 0):
            raise InputValidationError(
                "weights must be non-negative and finite",
                parameter="weights",
                hint="drop or repair rows whose stratum has no calendar entry",
            )
        object.__setattr__(self, "data", self.data.reset_index(drop=True).copy())
        object.__setattr__(self, "weights", _frozen(weights))
        object.__setattr__(self, "strata_vars", tuple(self.strata_vars))

        for name in ("strata", "clusters"):
            codes = getattr(self, name)
            if codes is None:
                continue
            codes = np.asarray(codes)
            if codes.shape != (n,):
                raise InputValidationError(
                    f"{name} has shape {codes.shape}, expected ({n},)",
                    parameter=name,
                    hint="supply one code per data row",
                )
            object.__setattr__(self, name, _frozen(codes))

        if self.replicate_weights is not None:
            rep = np.asarray(self.replicate_weights, dtype=float)
            if rep.ndim != 2 or rep.shape[0] != n or rep.shape[1] < 1:
                raise InputValidationError(
                    f"replicate_weights has shape {rep.shape}, expected ({n}, R)",
                    parameter="replicate_weights",
                    hint="one column per replicate, one row per data row",
                )
            if not np.all(np.isfinite(rep)) or np.any(rep < 0):
                raise InputValidationError(
                    "replicate_weights must be non-negative and finite",
                    parameter="replicate_weights",
                )
            rscales = self.replicate_rscales
            if rscales is None:
                rscales = np.ones(rep.shape[1])
            rscales = np.asarray(rscales, dtype=float)
            if rscales.shape != (rep.shape[1],):
                raise InputValidationError(
                    f"replicate_rscales has shape {rscales.shape}, "
                    f"expected ({rep.shape[1]},)",
                    parameter="replicate_rscales",
                )
            object.__setattr__(self, "replicate_weights", _frozen(rep))
            object.__setattr__(self, "replicate_rscales", _frozen(rscales))

    # -- properties --------------------------------------------------------

    @property
    def n_rows(self) -> int:
        return len(self.data)

    @property
    def has_replicates(self) -> bool:
        return self.replicate_weights is not None

    @property
    def n_replicates(self) -> int:
        return 0 if self.replicate_weights is None else self.replicate_weights.shape[1]

    def stratum_codes(self) -> np.ndarray:
        """Stratum code per row (all zeros when unstratified)."""
        if self.strata is None:
            return np.zeros(self.n_rows, dtype=int)
        return np.asarray(self.strata)

    def psu_codes(self) -> np.ndarray:
        """PSU code per row (row index when no clusters were given)."""
        if self.clusters is None:
            return np.arange(self.n_rows)
        return np.asarray(self.clusters)

    # -- transformations ----------------------------------------------------

    def take(
        self,
        positions: Sequence[int],
        data: Optional[pd.DataFrame] = None,
    ) -> "SurveyDesign":
        """Return a design over the rows at *positions*.

        Args:
            positions: Row positions into this design (repeats allowed).
            data: Replacement table for the selected rows (same length as
                *positions*).  Defaults to the selected rows themselves.
        """
        pos = np.asarray(positions, dtype=int)
        new_data = self.data.iloc[pos] if data is None else data
        if len(new_data) != len(pos):
            raise InputValidationError(
                f"replacement data has {len(new_data)} rows, expected {len(pos)}",
                parameter="data",
            )
        return SurveyDesign(
            data=new_data,
            weights=self.weights[pos],
            strata=None if self.strata is None else self.strata[pos],
            clusters=self.psu_codes()[pos],
            strata_vars=self.strata_vars,
            design_type=self.design_type,
            replicate_weights=(
                None if self.replicate_weights is None
                else self.replicate_weights[pos, :]
            ),
            replicate_method=self.replicate_method,
            replicate_scale=self.replicate_scale,
            replicate_rscales=self.replicate_rscales,
            metadata=dict(self.metadata),
        )

    def align_to(self, frame: pd.DataFrame, key: str) -> "SurveyDesign":
        """Carry this design's weights onto *frame* by matching on *key*.

        Used to attach a day-level design to day x group effort totals: every
        row of *frame* takes the weight, stratum, PSU and replicate weights of
        the design row with the same *key* value.  Rows sharing a key share a
        PSU.

        Raises:
            InputValidationError: If *key* is missing, not unique in the
                design, or some frame rows have no matching design row.
        """
        for table, label in ((self.data, "design data"), (frame, "frame")):
            if key not in table.columns:
                raise InputValidationError(
                    f"Column '{key}' not found in {label}",
                    parameter=key,
                    hint="build the design on the same day identifier as the counts",
                )
        keys = self.data[key]
        if keys.duplicated().any():
            raise InputValidationError(
                f"Design rows are not unique on '{key}'",
                parameter=key,
                hint="use a day-level design (one row per sampled day)",
            )
        lookup = pd.Series(np.arange(len(keys)), index=keys.to_numpy())
        positions = frame[key].map(lookup)
        if positions.isna().any():
            missing = frame.loc[positions.isna(), key].unique().tolist()
            raise InputValidationError(
                f"Failed to align survey weights on '{key}'; "
                f"unmatched values: {missing[:5]}",
                parameter=key,
                hint="every counted day must appear among the design's sampled days",
            )
        return self.take(positions.astype(int).to_numpy(), data=frame.reset_index(drop=True))

    def summary(self) -> Dict[str, Any]:
        """Compact description of the design."""
        return {
            "design_type": self.design_type,
            "n_rows": self.n_rows,
            "strata_vars": list(self.strata_vars),
            "n_strata": int(len(np.unique(self.stratum_codes()))),
            "n_psu": int(len(np.unique(self.psu_codes()))),
            "sum_weights": float(np.sum(self.weights)),
            "replicate_method": self.replicate_method,
            "n_replicates": self.n_replicates,
        }
