"""Tests for the rule-based QA checks."""

import numpy as np
import pandas as pd
import pytest

from models.errors import InputValidationError
from qa.checks import (
    QaResult,
    qa_check_effort,
    qa_check_missing,
    qa_check_planned_effort,
    qa_check_zeros,
    qa_score,
    run_qa_checks,
)


def _result(severity, detected=True):
    return QaResult(check="x", issue_detected=detected, severity=severity, n_total=1, n_flagged=0)


class TestEffortCheck:
    """Tests for qa_check_effort."""

    def test_clean_data(self):
        """Plausible trips raise nothing."""
        frame = pd.DataFrame({"hours_fished": [1.0, 2.0, 3.0], "catch_total": [0, 1, 2]})
        res = qa_check_effort(frame)
        assert not res.issue_detected
        assert res.severity == "none"
        assert res.sample_records is None

    def test_zero_effort_with_catch_is_high(self):
        """Catch reported with no effort is a high-severity issue."""
        frame = pd.DataFrame({"hours_fished": [0.0, 2.0], "catch_total": [3, 1]})
        res = qa_check_effort(frame)
        assert res.severity == "high"
        assert res.details["n_zero_effort_with_catch"] == 1
        assert len(res.sample_records) == 1

    def test_party_inconsistency(self):
        """Party effort differing from anglers x hours is flagged."""
        frame = pd.DataFrame({
            "party_hours": [4.0, 3.0, 2.0, 6.0],
            "anglers": [2, 1, 1, 3],
            "hours": [2.0, 3.0, 2.0, 1.0],
        })
        res = qa_check_effort(
            frame, effort_col="party_hours", num_anglers_col="anglers",
            hours_col="hours", catch_col=None,
        )
        assert res.details["n_inconsistent"] == 1
        assert res.severity == "high"

    def test_long_trip_outlier(self):
        """Trips beyond max_hours count as outliers."""
        hours = [1.0] * 19 + [30.0]
        res = qa_check_effort(pd.DataFrame({"hours_fished": hours}), catch_col=None)
        assert res.details["n_outliers_high"] == 1
        assert res.severity == "low"

    def test_empty_table(self):
        """Empty input is refused."""
        with pytest.raises(InputValidationError, match="non-empty"):
            qa_check_effort(pd.DataFrame({"hours_fished": []}))


class TestZerosCheck:
    """Tests for qa_check_zeros."""

    def test_interviews_without_zeros_high(self):
        """No zero catches at all suggests zeros were not recorded."""
        res = qa_check_zeros(pd.DataFrame({"catch_total": [1, 2, 3, 4]}))
        assert res.severity == "high"
        assert res.details["zero_rate"] == 0.0

    def test_interviews_expected_rate(self):
        """A zero rate at the expected level is fine."""
        res = qa_check_zeros(pd.DataFrame({"catch_total": [0, 1, 2, 3, 0]}))
        assert res.severity == "none"

    def test_count_coverage(self):
        """Missing date x location cells lower coverage."""
        counts = pd.DataFrame({
            "date": ["d1", "d1", "d2"],
            "location": ["A", "B", "A"],
            "count": [3, 0, 2],
        })
        res = qa_check_zeros(counts, kind="counts", location_col="location")
        assert res.details["coverage_rate"] == pytest.approx(0.75)
        assert res.n_flagged == 1
        assert res.severity == "medium"

    def test_unknown_kind(self):
        """Only counts and interviews are known."""
        with pytest.raises(InputValidationError, match="kind"):
            qa_check_zeros(pd.DataFrame({"x": [1]}), kind="flights")


class TestMissingCheck:
    """Tests for qa_check_missing."""

    def test_required_missing_is_high(self):
        """Any gap in a required column is high severity."""
        frame = pd.DataFrame({"date": ["d1", None], "catch_total": [1, 2]})
        res = qa_check_missing(frame, required=["date"])
        assert res.severity == "high"
        assert res.details["critical_columns"] == ["date"]

    def test_complete_table(self):
        """A complete table passes."""
        res = qa_check_missing(pd.DataFrame({"a": [1, 2], "b": [3, 4]}))
        assert res.severity == "none"
        assert res.details["completeness_rate"] == 1.0


class TestPlannedEffortCheck:
    """Tests for qa_check_planned_effort."""

    def test_short_planned_trips(self):
        """Planned lengths below the hours fished are counted."""
        frame = pd.DataFrame({
            "hours_fished": [2.0, 1.0, 3.0],
            "total_trip_effort": [1.0, 4.0, np.nan],
        })
        res = qa_check_planned_effort(frame)
        assert res.n_flagged == 1
        assert res.severity == "high"
        assert res.details["n_planned_missing"] == 1


class TestScoring:
    """Tests for the score and grade."""

    def test_perfect_score(self):
        """No issues score 100 and grade A."""
        assert qa_score([_result("none", detected=False)]) == (100, "A")

    def test_penalties(self):
        """High 15, medium 8, low 3."""
        score, grade = qa_score([_result("high"), _result("medium"), _result("low")])
        assert score == 74
        assert grade == "C"

    def test_floor_at_zero(self):
        """The score never goes negative."""
        score, grade = qa_score([_result("high")] * 10)
        assert score == 0
        assert grade == "F"

    def test_invalid_severity(self):
        """Severities outside the scale are refused."""
        with pytest.raises(ValueError):
            _result("critical")


class TestRunQaChecks:
    """Tests for the combined QA run."""

    def test_mock_season(self, mock_interviews, mock_counts):
        """The mock season runs every check."""
        summary = run_qa_checks(mock_interviews, counts=mock_counts)
        assert set(summary.results) == {"effort", "zeros", "missing", "planned_effort", "count_coverage"}
        assert 0 <= summary.score <= 100
        assert summary.grade in {"A", "B", "C", "D", "F"}
        frame = summary.to_frame()
        assert len(frame) == 5
        assert summary.results["count_coverage"].details["coverage_rate"] == 1.0

    def test_planned_check_skipped_without_column(self, two_site_interviews):
        """Without planned effort only three checks run."""
        summary = run_qa_checks(two_site_interviews)
        assert "planned_effort" not in summary.results
