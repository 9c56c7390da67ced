"""Tests for the CPUE estimators."""

import warnings

import numpy as np
import pandas as pd
import pytest

from estimators.cpue import (
    classify_completeness,
    completion_flags,
    estimate_cpue,
    estimate_cpue_roving,
)
from models.errors import DataQualityWarning, InputValidationError
from models.methods import TripCompleteness
from survey.builders import build_access_design, build_simple_design
from survey.variance import survey_mean, survey_ratio


def _design(**columns):
    return build_simple_design(pd.DataFrame(columns))


class TestRatioOfMeans:
    """Tests for sum(catch) / sum(effort)."""

    def test_constant_rate_exact(self, constant_rate_interviews):
        """catch=[2,4,6], effort=[1,2,3] gives exactly 2.0."""
        design = build_simple_design(constant_rate_interviews)
        out = estimate_cpue(design, mode="ratio_of_means")
        assert out.loc[0, "estimate"] == 2.0
        assert out.loc[0, "standard_error"] == pytest.approx(0.0, abs=1e-12)
        assert out.loc[0, "method_label"] == "cpue_ratio_of_means:catch_total"
        assert out.loc[0, "sample_size"] == 3

    def test_single_observation_se_zero(self):
        """One interview in a group: SE is 0.0 by the certainty floor."""
        design = _design(
            location=["A", "B", "B"],
            catch_total=[0.7, 1.0, 2.0],
            hours_fished=[0.3, 1.0, 4.0],
        )
        out = estimate_cpue(design, by="location", mode="ratio_of_means")
        a = out[out["location"] == "A"].iloc[0]
        assert a["sample_size"] == 1
        assert a["estimate"] == pytest.approx(0.7 / 0.3)
        assert a["standard_error"] == 0.0
        assert a["ci_low"] == a["estimate"] == a["ci_high"]

    def test_all_zero_catch(self):
        """Zero catch gives CPUE 0 with a finite SE."""
        design = _design(catch_total=[0.0, 0.0, 0.0], hours_fished=[1.0, 2.0, 3.0])
        out = estimate_cpue(design, mode="ratio_of_means")
        assert out.loc[0, "estimate"] == 0.0
        assert np.isfinite(out.loc[0, "standard_error"])

    def test_weights_change_estimate(self):
        """Heavier weights pull the ratio toward their rows."""
        data = pd.DataFrame({
            "catch_total": [1.0, 4.0],
            "hours_fished": [1.0, 1.0],
            "w": [3.0, 1.0],
        })
        out = estimate_cpue(build_simple_design(data, weight_col="w"), mode="ratio_of_means")
        assert out.loc[0, "estimate"] == pytest.approx(7.0 / 4.0)


class TestMeanOfRatios:
    """Tests for mean(catch_i / effort_i)."""

    def test_constant_rate_with_length_bias_correction(self):
        """catch=[4,6,8], effort=[2,3,4], planned=[4,6,8] stays at 2.0."""
        design = _design(
            catch_total=[4.0, 6.0, 8.0],
            hours_fished=[2.0, 3.0, 4.0],
            total_trip_effort=[4.0, 6.0, 8.0],
        )
        out = estimate_cpue(design, mode="mean_of_ratios", length_bias_correction="pollock")
        row = out.iloc[0]
        assert row["estimate"] == pytest.approx(2.0)
        assert row["method_label"] == "cpue_mean_of_ratios:catch_total:pollock"
        assert row["diagnostics"]["bias_correction"] == "pollock"

    def test_truncation_keeps_three(self):
        """effort=[0.1,0.3,0.6,1.0,2.0] at 0.5 h keeps n=3 and warns."""
        design = _design(
            catch_total=[1.0, 1.0, 1.0, 1.0, 1.0],
            hours_fished=[0.1, 0.3, 0.6, 1.0, 2.0],
        )
        with pytest.warns(DataQualityWarning, match="Truncated"):
            out = estimate_cpue(design, mode="mean_of_ratios", min_trip_hours=0.5)
        assert out.loc[0, "sample_size"] == 3
        assert out.loc[0, "diagnostics"]["n_truncated"] == 2

    def test_no_warning_below_rate(self):
        """No truncation, no truncation warning."""
        design = _design(catch_total=[1.0, 2.0], hours_fished=[1.0, 2.0])
        with warnings.catch_warnings():
            warnings.simplefilter("error", DataQualityWarning)
            estimate_cpue(design, mode="mean_of_ratios")

    def test_single_observation_se_nan(self):
        """One trip: estimate defined, SE NaN, flagged in diagnostics."""
        design = _design(
            location=["A", "B", "B"],
            catch_total=[3.0, 1.0, 2.0],
            hours_fished=[2.0, 1.0, 4.0],
        )
        out = estimate_cpue(design, by="location", mode="mean_of_ratios")
        a = out[out["location"] == "A"].iloc[0]
        assert a["estimate"] == pytest.approx(1.5)
        assert np.isnan(a["standard_error"])
        assert a["diagnostics"]["single_observation"] is True

    def test_nonfinite_ratios_excluded(self):
        """Zero effort with truncation disabled is excluded and counted."""
        design = _design(catch_total=[1.0, 1.0, 2.0], hours_fished=[0.0, 1.0, 2.0])
        with pytest.warns(DataQualityWarning, match="non-finite"):
            out = estimate_cpue(design, mode="mean_of_ratios", min_trip_hours=0.0)
        assert out.loc[0, "sample_size"] == 2
        assert out.loc[0, "diagnostics"]["n_nonfinite_excluded"] == 1
        assert out.loc[0, "estimate"] == pytest.approx(1.0)

    def test_planned_below_observed_corrected(self):
        """Planned effort shorter than observed is replaced, with a warning."""
        design = _design(
            catch_total=[2.0, 4.0],
            hours_fished=[1.0, 2.0],
            total_trip_effort=[0.5, 4.0],
        )
        with pytest.warns(DataQualityWarning, match="Planned trip effort"):
            out = estimate_cpue(design, mode="mean_of_ratios", length_bias_correction="pollock")
        assert out.loc[0, "diagnostics"]["n_planned_corrected"] == 1
        assert out.loc[0, "estimate"] == pytest.approx(2.0)

    def test_all_zero_catch(self):
        """Zero catch gives CPUE 0 with a finite SE."""
        design = _design(catch_total=[0.0, 0.0, 0.0], hours_fished=[1.0, 2.0, 3.0])
        out = estimate_cpue(design, mode="mean_of_ratios")
        assert out.loc[0, "estimate"] == 0.0
        assert np.isfinite(out.loc[0, "standard_error"])

    def test_roving_entry_point(self):
        """estimate_cpue_roving is the mean-of-ratios estimator."""
        design = _design(catch_total=[1.0, 3.0], hours_fished=[1.0, 1.0])
        out = estimate_cpue_roving(design)
        assert out.loc[0, "method_label"] == "cpue_mean_of_ratios:catch_total:none"
        assert out.loc[0, "estimate"] == pytest.approx(2.0)


class TestValidation:
    """Tests for fatal input errors."""

    def test_correction_without_planned_column(self):
        """Pollock correction needs its planned-effort column."""
        design = _design(catch_total=[1.0], hours_fished=[1.0])
        with pytest.raises(InputValidationError, match="total_trip_effort"):
            estimate_cpue(design, mode="mean_of_ratios", length_bias_correction="pollock")

    def test_negative_truncation_threshold(self):
        """A negative threshold is refused."""
        design = _design(catch_total=[1.0], hours_fished=[1.0])
        with pytest.raises(InputValidationError, match="min_trip_hours"):
            estimate_cpue(design, mode="mean_of_ratios", min_trip_hours=-1.0)

    def test_bad_conf_level(self):
        """Confidence level must lie in (0, 1)."""
        design = _design(catch_total=[1.0], hours_fished=[1.0])
        with pytest.raises(InputValidationError, match="conf_level"):
            estimate_cpue(design, mode="ratio_of_means", conf_level=1.5)

    def test_numpy_scalar_options_accepted(self):
        """numpy integers and floats are valid numeric options."""
        design = _design(catch_total=[1.0, 2.0], hours_fished=[2.0, 3.0])
        out = estimate_cpue(
            design, mode="mean_of_ratios",
            min_trip_hours=np.int64(1), conf_level=np.float32(0.9),
        )
        assert out.loc[0, "sample_size"] == 2
        assert out.loc[0, "ci_low"] < out.loc[0, "estimate"] < out.loc[0, "ci_high"]

    def test_bool_threshold_rejected(self):
        """True is not a truncation threshold."""
        design = _design(catch_total=[1.0], hours_fished=[1.0])
        with pytest.raises(InputValidationError, match="min_trip_hours"):
            estimate_cpue(design, mode="mean_of_ratios", min_trip_hours=True)

    def test_missing_response(self):
        """The catch column must exist."""
        design = _design(hours_fished=[1.0])
        with pytest.raises(InputValidationError, match="catch_total"):
            estimate_cpue(design, mode="ratio_of_means")

    def test_auto_needs_completion_column(self):
        """Auto mode requires the trip-completion flag."""
        design = _design(catch_total=[1.0], hours_fished=[1.0])
        with pytest.raises(InputValidationError, match="trip_complete"):
            estimate_cpue(design)

    def test_design_type_checked(self, constant_rate_interviews):
        """A raw table is not a design."""
        with pytest.raises(InputValidationError, match="SurveyDesign"):
            estimate_cpue(constant_rate_interviews)


class TestAutoMode:
    """Tests for completeness dispatch."""

    def test_flag_parsing(self):
        """Booleans, numbers and words map onto 1 / 0 / NaN."""
        flags = completion_flags(pd.Series([True, "no", 1, "complete", None, "maybe"]))
        np.testing.assert_array_equal(flags[:4], [1.0, 0.0, 1.0, 1.0])
        assert np.isnan(flags[4]) and np.isnan(flags[5])

    def test_classification(self):
        """All ones, all zeros, or a mixture."""
        assert classify_completeness(np.array([1.0, 1.0])) is TripCompleteness.COMPLETE
        assert classify_completeness(np.array([0.0])) is TripCompleteness.INCOMPLETE
        assert classify_completeness(np.array([1.0, 0.0])) is TripCompleteness.MIXED

    def test_dispatch_per_group(self, simple_design):
        """Complete sites use RoM, incomplete sites MoR."""
        out = estimate_cpue(simple_design, by="location")
        labels = dict(zip(out["location"], out["method_label"]))
        assert labels["North Ramp"] == "cpue_ratio_of_means:catch_total"
        assert labels["South Ramp"] == "cpue_mean_of_ratios:catch_total:none"

    def test_mixed_combination(self, simple_design):
        """Mixed groups weight RoM and MoR by design-weighted effort share."""
        out = estimate_cpue(simple_design, by="date")
        row = out[out["date"] == "2024-06-01"].iloc[0]
        # complete: 4 fish / 3.5 h, incomplete rates 0 and 2/3, effort shares 3.5 and 4
        w1 = 3.5 / 7.5
        expected = w1 * (4.0 / 3.5) + (1 - w1) * (1.0 / 3.0)
        assert row["estimate"] == pytest.approx(expected)
        assert row["method_label"] == "cpue_mixed:catch_total:none"
        assert row["diagnostics"]["completeness"] == "mixed"
        assert row["sample_size"] == 4

    def test_mixed_variance_combines_components(self, simple_design):
        """Var = w1^2 Var(RoM) + w2^2 Var(MoR) on the same design."""
        out = estimate_cpue(simple_design, by="date")
        row = out[out["date"] == "2024-06-01"].iloc[0]
        data = simple_design.data
        catch = data["catch_total"].to_numpy(dtype=float)
        hours = data["hours_fished"].to_numpy(dtype=float)
        v1 = survey_ratio(simple_design, catch, hours, positions=np.array([0, 1])).variance
        rates = np.full(len(data), np.nan)
        rates[[2, 3]] = catch[[2, 3]] / hours[[2, 3]]
        v2 = survey_mean(simple_design, rates, positions=np.array([2, 3])).variance
        w1 = 3.5 / 7.5
        w2 = 1 - w1
        assert v1 > 0 and v2 > 0
        assert row["standard_error"] == pytest.approx(np.sqrt(w1 ** 2 * v1 + w2 ** 2 * v2))

    def test_mixed_fallback_when_incomplete_truncated(self):
        """If every incomplete trip is truncated the complete part stands alone."""
        design = _design(
            catch_total=[2.0, 4.0, 1.0],
            hours_fished=[1.0, 2.0, 0.2],
            trip_complete=[True, True, False],
        )
        with pytest.warns(DataQualityWarning):
            out = estimate_cpue(design)
        assert out.loc[0, "estimate"] == pytest.approx(2.0)
        assert out.loc[0, "diagnostics"]["mixed_fallback"] == "ratio_of_means"

    def test_na_completion_excluded_with_warning(self):
        """Rows without a completion flag are left out and counted."""
        design = _design(
            catch_total=[2.0, 4.0, 100.0],
            hours_fished=[1.0, 2.0, 1.0],
            trip_complete=[True, True, None],
        )
        with pytest.warns(DataQualityWarning, match="completion|trip_complete"):
            out = estimate_cpue(design)
        assert out.loc[0, "estimate"] == pytest.approx(2.0)
        assert out.loc[0, "diagnostics"]["n_completion_na"] == 1


class TestProperties:
    """Properties on the mock season."""

    def test_non_negative(self, mock_interviews, mock_calendar):
        """CPUE is never negative for non-negative inputs."""
        design = build_access_design(mock_interviews, mock_calendar)
        out = estimate_cpue(design, by=("location", "shift_block"))
        assert (out["estimate"].dropna() >= 0).all()

    def test_idempotent(self, mock_interviews, mock_calendar):
        """Identical inputs give identical outputs."""
        design = build_access_design(mock_interviews, mock_calendar)
        cols = ["location", "estimate", "standard_error", "ci_low", "ci_high", "sample_size", "method_label"]
        a = estimate_cpue(design, by="location")
        b = estimate_cpue(design, by="location")
        pd.testing.assert_frame_equal(a[cols], b[cols])

    def test_interval_symmetric(self, mock_interviews, mock_calendar):
        """ci_high - estimate equals estimate - ci_low."""
        design = build_access_design(mock_interviews, mock_calendar)
        out = estimate_cpue(design, by="location", mode="ratio_of_means")
        np.testing.assert_allclose(out["ci_high"] - out["estimate"], out["estimate"] - out["ci_low"])
