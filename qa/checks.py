"""
Rule-based quality checks over raw creel tables.

These are not inference: each check scans interview or count rows for a
known failure pattern and returns a ``QaResult`` with a severity and a short
recommendation.  ``run_qa_checks`` runs the applicable checks and condenses
them into a 0-100 score and a letter grade.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from config import (
    DEFAULT_EFFORT_COL,
    DEFAULT_PLANNED_EFFORT_COL,
    DEFAULT_RESPONSE,
    QA_COUNT_COVERAGE,
    QA_EFFORT_TOLERANCE,
    QA_EXPECTED_ZERO_RATE,
    QA_GRADE_THRESHOLDS,
    QA_MAX_HOURS,
    QA_MIN_HOURS,
    QA_MISSING_THRESHOLD,
    QA_SAMPLE_RECORDS,
    QA_SEVERITY_PENALTIES,
)
from data.schemas import require_columns
from models.errors import InputValidationError


logger = logging.getLogger(__name__)

SEVERITIES = ("none", "low", "medium", "high")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QaResult:
    """Outcome of one quality check."""

    check: str
    issue_detected: bool
    severity: str
    n_total: int
    n_flagged: int
    details: Dict[str, Any] = field(default_factory=dict)
    sample_records: Optional[pd.DataFrame] = None
    recommendation: str = ""

    def __post_init__(self):
        if self.severity not in SEVERITIES:
            raise ValueError(f"severity must be one of {SEVERITIES}, got {self.severity!r}")


@dataclass(frozen=True)
class QaSummary:
    """Combined result of ``run_qa_checks``."""

    results: Dict[str, QaResult]
    score: int
    grade: str

    @property
    def issues_detected(self) -> int:
        return sum(1 for r in self.results.values() if r.issue_detected)

    @property
    def high_severity_issues(self) -> int:
        return sum(1 for r in self.results.values() if r.severity == "high")

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "check": r.check,
                "issue_detected": r.issue_detected,
                "severity": r.severity,
                "n_total": r.n_total,
                "n_flagged": r.n_flagged,
            }
            for r in self.results.values()
        ]
        return pd.DataFrame(rows, columns=["check", "issue_detected", "severity", "n_total", "n_flagged"])


def _require_rows(frame: pd.DataFrame, name: str) -> None:
    if not isinstance(frame, pd.DataFrame) or frame.empty:
        raise InputValidationError(
            f"{name} must be a non-empty DataFrame",
            parameter=name,
            hint="provide the table to check",
        )


def _samples(frame: pd.DataFrame, mask: np.ndarray) -> Optional[pd.DataFrame]:
    if not np.any(mask):
        return None
    return frame.loc[mask].head(QA_SAMPLE_RECORDS).reset_index(drop=True)


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def qa_check_effort(
    interviews: pd.DataFrame,
    effort_col: str = DEFAULT_EFFORT_COL,
    num_anglers_col: Optional[str] = None,
    hours_col: Optional[str] = None,
    catch_col: Optional[str] = DEFAULT_RESPONSE,
    tolerance: float = QA_EFFORT_TOLERANCE,
    min_hours: float = QA_MIN_HOURS,
    max_hours: float = QA_MAX_HOURS,
) -> QaResult:
    """Party-effort consistency, zero effort with catch, and implausible trip lengths.

    Severity: high for any zero-effort interview with catch or more than 20%
    inconsistent party effort; medium above 5% inconsistent or 10% outliers;
    low for any other finding.
    """
    _require_rows(interviews, "interviews")
    require_columns(interviews, [effort_col], "qa_check_effort")
    n_total = len(interviews)
    effort = interviews[effort_col].to_numpy(dtype=float)

    inconsistent = np.zeros(n_total, dtype=bool)
    if num_anglers_col is not None and hours_col is not None:
        require_columns(interviews, [num_anglers_col, hours_col], "qa_check_effort")
        expected = (
            interviews[num_anglers_col].to_numpy(dtype=float)
            * interviews[hours_col].to_numpy(dtype=float)
        )
        with np.errstate(invalid="ignore"):
            inconsistent = np.isfinite(effort) & np.isfinite(expected) & (np.abs(effort - expected) > tolerance)

    zero_with_catch = np.zeros(n_total, dtype=bool)
    if catch_col is not None and catch_col in interviews.columns:
        catch = interviews[catch_col].to_numpy(dtype=float)
        with np.errstate(invalid="ignore"):
            zero_with_catch = ((effort == 0) | np.isnan(effort)) & (catch > 0)

    with np.errstate(invalid="ignore"):
        high = effort > max_hours
        low = (effort < 0) | ((effort > 0) & (effort < min_hours))
    outliers = high | low

    n_inconsistent = int(inconsistent.sum())
    n_outliers = int(outliers.sum())
    n_zero_catch = int(zero_with_catch.sum())
    pct_inconsistent = n_inconsistent / n_total
    pct_outliers = n_outliers / n_total

    if n_zero_catch > 0 or pct_inconsistent > 0.20:
        severity = "high"
    elif pct_inconsistent > 0.05 or pct_outliers > 0.10:
        severity = "medium"
    elif n_inconsistent or n_outliers:
        severity = "low"
    else:
        severity = "none"

    flagged = inconsistent | outliers | zero_with_catch
    recommendation = ""
    if severity != "none":
        recommendation = (
            f"Review effort: {n_inconsistent} inconsistent party totals, "
            f"{n_outliers} trips outside [{min_hours}, {max_hours}] h, "
            f"{n_zero_catch} interviews with catch but no effort."
        )
    return QaResult(
        check="effort",
        issue_detected=severity != "none",
        severity=severity,
        n_total=n_total,
        n_flagged=int(flagged.sum()),
        details={
            "n_inconsistent": n_inconsistent,
            "n_outliers_high": int(high.sum()),
            "n_outliers_low": int(low.sum()),
            "n_zero_effort_with_catch": n_zero_catch,
            "n_missing_effort": int(np.isnan(effort).sum()),
        },
        sample_records=_samples(interviews, flagged),
        recommendation=recommendation,
    )


def _count_coverage(data, date_col, location_col, value_col, expected_coverage) -> QaResult:
    require_columns(data, [value_col], "qa_check_zeros (counts)")
    cells = [date_col] if location_col is None else [date_col, location_col]
    observed = data.loc[data[value_col].notna(), cells].drop_duplicates()
    n_expected = int(np.prod([data[c].nunique() for c in cells]))
    coverage = len(observed) / n_expected if n_expected else 0.0

    if coverage < 0.7:
        severity = "high"
    elif coverage < 0.9:
        severity = "medium"
    elif coverage < expected_coverage:
        severity = "low"
    else:
        severity = "none"
    recommendation = ""
    if severity != "none":
        recommendation = (
            f"Only {coverage:.0%} of {' x '.join(cells)} cells have a count; "
            f"record zero counts explicitly instead of leaving cells empty."
        )
    return QaResult(
        check="zeros",
        issue_detected=severity != "none",
        severity=severity,
        n_total=n_expected,
        n_flagged=n_expected - len(observed),
        details={"coverage_rate": coverage, "expected_coverage": expected_coverage, "kind": "counts"},
        recommendation=recommendation,
    )


def _zero_catch_rate(data, value_col, expected_zero_rate) -> QaResult:
    require_columns(data, [value_col], "qa_check_zeros (interviews)")
    catch = data[value_col].to_numpy(dtype=float)
    known = ~np.isnan(catch)
    n_known = int(known.sum())
    zero_rate = float(np.sum(catch[known] == 0) / n_known) if n_known else float("nan")

    if not n_known or zero_rate < 0.1:
        severity = "high"
    elif zero_rate < expected_zero_rate * 0.75:
        severity = "medium"
    elif zero_rate < expected_zero_rate:
        severity = "low"
    else:
        severity = "none"
    recommendation = ""
    if severity != "none":
        recommendation = (
            f"Zero-catch rate {zero_rate:.0%} is below the expected "
            f"{expected_zero_rate:.0%}; check that zero-catch interviews are recorded."
        )
    return QaResult(
        check="zeros",
        issue_detected=severity != "none",
        severity=severity,
        n_total=len(catch),
        n_flagged=int(np.sum(catch[known] == 0)),
        details={"zero_rate": zero_rate, "expected_zero_rate": expected_zero_rate, "kind": "interviews"},
        recommendation=recommendation,
    )


def qa_check_zeros(
    data: pd.DataFrame,
    kind: str = "interviews",
    date_col: str = "date",
    location_col: Optional[str] = None,
    value_col: Optional[str] = None,
    expected_zero_rate: float = QA_EXPECTED_ZERO_RATE,
    expected_coverage: float = QA_COUNT_COVERAGE,
) -> QaResult:
    """Look for unrecorded zeros.

    For counts: share of date (x location) cells that carry a count.  For
    interviews: share of zero-catch interviews against *expected_zero_rate*.
    """
    _require_rows(data, "data")
    if kind == "counts":
        cols = [date_col] + ([] if location_col is None else [location_col])
        require_columns(data, cols, "qa_check_zeros (counts)")
        return _count_coverage(data, date_col, location_col, value_col or "count", expected_coverage)
    if kind == "interviews":
        return _zero_catch_rate(data, value_col or DEFAULT_RESPONSE, expected_zero_rate)
    raise InputValidationError(
        f"Unknown kind {kind!r}",
        parameter="kind",
        hint="choose one of: counts, interviews",
    )


def qa_check_missing(
    data: pd.DataFrame,
    required: Sequence[str] = (),
    important: Sequence[str] = (),
    threshold: float = QA_MISSING_THRESHOLD,
) -> QaResult:
    """Missing-value patterns across columns.

    Severity: high if any *required* value is missing or fewer than 80% of
    rows are complete; medium if an *important* column misses more than
    twice *threshold*; low if any column exceeds *threshold* or fewer than
    95% of rows are complete.
    """
    _require_rows(data, "data")
    require_columns(data, list(required) + list(important), "qa_check_missing")
    rates = data.isna().mean()
    key_cols = list(required) + list(important) or list(data.columns)
    complete = ~data[key_cols].isna().any(axis=1)
    completeness = float(complete.mean())
    critical = [c for c in required if rates[c] > 0]
    heavy = [c for c in important if rates[c] > 2 * threshold]
    flagged_cols = [c for c in data.columns if rates[c] > threshold]

    if critical or completeness < 0.8:
        severity = "high"
    elif heavy:
        severity = "medium"
    elif flagged_cols or completeness < 0.95:
        severity = "low"
    else:
        severity = "none"
    recommendation = ""
    if severity != "none":
        worst = critical or heavy or flagged_cols
        recommendation = (
            f"{completeness:.0%} of rows complete; fill or explain missing values in {worst}."
        )
    return QaResult(
        check="missing",
        issue_detected=severity != "none",
        severity=severity,
        n_total=len(data),
        n_flagged=int((~complete).sum()),
        details={
            "completeness_rate": completeness,
            "missing_rate": {c: float(rates[c]) for c in data.columns},
            "critical_columns": critical,
        },
        sample_records=_samples(data, (~complete).to_numpy()),
        recommendation=recommendation,
    )


def qa_check_planned_effort(
    interviews: pd.DataFrame,
    effort_col: str = DEFAULT_EFFORT_COL,
    planned_col: str = DEFAULT_PLANNED_EFFORT_COL,
) -> QaResult:
    """Planned total trip length shorter than the hours already fished."""
    _require_rows(interviews, "interviews")
    require_columns(interviews, [effort_col, planned_col], "qa_check_planned_effort")
    effort = interviews[effort_col].to_numpy(dtype=float)
    planned = interviews[planned_col].to_numpy(dtype=float)
    with np.errstate(invalid="ignore"):
        short = planned < effort
    n_short = int(short.sum())
    share = n_short / len(interviews)

    if share > 0.20:
        severity = "high"
    elif share > 0.05:
        severity = "medium"
    elif n_short:
        severity = "low"
    else:
        severity = "none"
    recommendation = ""
    if n_short:
        recommendation = (
            f"{n_short} interviews report a planned trip shorter than the time fished; "
            f"these are corrected to observed effort during length-bias correction."
        )
    return QaResult(
        check="planned_effort",
        issue_detected=severity != "none",
        severity=severity,
        n_total=len(interviews),
        n_flagged=n_short,
        details={"n_planned_missing": int(np.isnan(planned).sum())},
        sample_records=_samples(interviews, short),
        recommendation=recommendation,
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def qa_score(results: Sequence[QaResult]):
    """0-100 score (100 minus severity penalties, floored at 0) and its grade."""
    score = 100 - sum(QA_SEVERITY_PENALTIES[r.severity] for r in results if r.issue_detected)
    score = max(0, score)
    for grade, lower in QA_GRADE_THRESHOLDS:
        if score >= lower:
            return score, grade
    return score, QA_GRADE_THRESHOLDS[-1][0]


def run_qa_checks(
    interviews: pd.DataFrame,
    counts: Optional[pd.DataFrame] = None,
    effort_col: str = DEFAULT_EFFORT_COL,
    catch_col: str = DEFAULT_RESPONSE,
    planned_col: str = DEFAULT_PLANNED_EFFORT_COL,
    location_col: Optional[str] = "location",
) -> QaSummary:
    """Run every check that applies to the supplied tables.

    The planned-effort check runs only when *planned_col* is present; the
    count-coverage check only when *counts* is given.
    """
    _require_rows(interviews, "interviews")
    results: List[QaResult] = [
        qa_check_effort(interviews, effort_col=effort_col, catch_col=catch_col),
        qa_check_zeros(interviews, kind="interviews", value_col=catch_col),
        qa_check_missing(interviews, important=[c for c in (effort_col, catch_col) if c in interviews.columns]),
    ]
    if planned_col in interviews.columns:
        results.append(qa_check_planned_effort(interviews, effort_col, planned_col))
    named = {r.check: r for r in results}
    if counts is not None:
        loc = location_col if location_col in counts.columns else None
        named["count_coverage"] = qa_check_zeros(counts, kind="counts", location_col=loc)

    score, grade = qa_score(list(named.values()))
    summary = QaSummary(results=named, score=score, grade=grade)
    logger.info(
        "QA: %d checks, %d issues (%d high), score %d grade %s",
        len(named), summary.issues_detected, summary.high_severity_issues, score, grade,
    )
    return summary
