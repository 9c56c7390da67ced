"""Tests for the delta-method harvest estimator."""

import numpy as np
import pandas as pd
import pytest

from estimators.harvest import delta_method_product, estimate_total_harvest
from models.errors import GAP_KEY, DataQualityWarning, InputValidationError


def _est(keys, estimates, ses, sizes):
    frame = pd.DataFrame(keys)
    frame["estimate"] = estimates
    frame["standard_error"] = ses
    frame["sample_size"] = sizes
    return frame


@pytest.fixture
def effort_est():
    """Effort for two sites."""
    return _est({"location": ["A", "B"]}, [100.0, 50.0], [10.0, 5.0], [12, 8])


@pytest.fixture
def cpue_est():
    """CPUE for two sites."""
    return _est({"location": ["A", "B"]}, [0.5, 2.0], [0.1, 0.4], [30, 5])


class TestDeltaMethod:
    """Tests for the product variance."""

    def test_independent_formula(self):
        """Var = C^2 Var(E) + E^2 Var(C)."""
        p = delta_method_product(100.0, 10.0, 0.5, 0.1)
        assert p.estimate == 50.0
        assert p.variance == pytest.approx(0.25 * 100.0 + 10000.0 * 0.01)

    def test_covariance_term(self):
        """A covariance adds 2 E C Cov."""
        p = delta_method_product(100.0, 10.0, 0.5, 0.1, covariance=0.2)
        assert p.variance == pytest.approx(125.0 + 2 * 100.0 * 0.5 * 0.2)


class TestTotalHarvest:
    """Tests for joining and combining effort and CPUE."""

    def test_point_estimate_is_product(self, effort_est, cpue_est):
        """Harvest equals effort x CPUE exactly."""
        out = estimate_total_harvest(effort_est, cpue_est, by="location")
        np.testing.assert_array_equal(out["estimate"].to_numpy(), [50.0, 100.0])

    def test_independent_variance(self, effort_est, cpue_est):
        """Independent mode omits the covariance and says so."""
        out = estimate_total_harvest(effort_est, cpue_est, by="location")
        row = out.iloc[0]
        assert row["standard_error"] ** 2 == pytest.approx(0.25 * 100.0 + 10000.0 * 0.01)
        assert row["diagnostics"]["covariance"] == 0.0
        assert row["diagnostics"]["covariance_asserted_zero"] is True
        assert row["method_label"] == "product:catch_total:independent"

    def test_sample_size_is_min(self, effort_est, cpue_est):
        """n is the smaller of the two sample sizes."""
        out = estimate_total_harvest(effort_est, cpue_est, by="location")
        assert list(out["sample_size"]) == [12, 5]

    def test_correlated_mode(self, effort_est, cpue_est):
        """Cov = rho * SE(E) * SE(C)."""
        out = estimate_total_harvest(
            effort_est, cpue_est, by="location", variance_mode="correlated", correlation=0.5,
        )
        expected = 125.0 + 2 * 100.0 * 0.5 * (0.5 * 10.0 * 0.1)
        assert out.loc[0, "standard_error"] ** 2 == pytest.approx(expected)

    def test_correlated_with_covariance(self, effort_est, cpue_est):
        """A covariance can be given directly."""
        out = estimate_total_harvest(
            effort_est, cpue_est, by="location", variance_mode="correlated", covariance=0.2,
        )
        assert out.loc[0, "diagnostics"]["covariance"] == 0.2

    def test_unmatched_strata_kept_as_na(self, effort_est, cpue_est):
        """Strata in one table only give NA rows with a diagnostic."""
        cpue = _est({"location": ["A", "C"]}, [0.5, 1.0], [0.1, 0.1], [30, 4])
        with pytest.warns(DataQualityWarning, match="only one"):
            out = estimate_total_harvest(effort_est, cpue, by="location")
        assert list(out["location"]) == ["A", "B", "C"]
        b = out[out["location"] == "B"].iloc[0]
        assert np.isnan(b["estimate"])
        assert b["diagnostics"][GAP_KEY]["reason"] == "unmatched_stratum"

    def test_interval_symmetric(self, effort_est, cpue_est):
        """The Wald interval is symmetric."""
        out = estimate_total_harvest(effort_est, cpue_est, by="location", conf_level=0.9)
        np.testing.assert_allclose(out["ci_high"] - out["estimate"], out["estimate"] - out["ci_low"])

    def test_no_by_requires_single_rows(self, effort_est, cpue_est):
        """Without keys both inputs must be one row."""
        with pytest.raises(InputValidationError, match="exactly one row"):
            estimate_total_harvest(effort_est, cpue_est)

    def test_no_by_single_rows(self, effort_est, cpue_est):
        """Single-row inputs combine without keys."""
        out = estimate_total_harvest(effort_est.iloc[[0]], cpue_est.iloc[[0]])
        assert out.loc[0, "estimate"] == 50.0


class TestVarianceOptions:
    """Tests for contradictory or invalid variance options."""

    def test_independent_with_correlation(self, effort_est, cpue_est):
        """Independent mode cannot take a correlation."""
        with pytest.raises(InputValidationError, match="variance_mode"):
            estimate_total_harvest(effort_est, cpue_est, by="location", correlation=0.3)

    def test_correlated_needs_value(self, effort_est, cpue_est):
        """Correlated mode needs a correlation or covariance."""
        with pytest.raises(InputValidationError, match="correlation"):
            estimate_total_harvest(effort_est, cpue_est, by="location", variance_mode="correlated")

    def test_correlation_range(self, effort_est, cpue_est):
        """Correlation must lie in [-1, 1]."""
        with pytest.raises(InputValidationError, match=r"\[-1, 1\]"):
            estimate_total_harvest(
                effort_est, cpue_est, by="location", variance_mode="correlated", correlation=1.5,
            )

    def test_numpy_correlation_accepted(self, effort_est, cpue_est):
        """A numpy float correlation is used like a Python float."""
        out = estimate_total_harvest(
            effort_est, cpue_est, by="location",
            variance_mode="correlated", correlation=np.float64(0.5),
        )
        assert out.loc[0, "diagnostics"]["correlation"] == 0.5

    def test_numpy_covariance_accepted(self, effort_est, cpue_est):
        """A numpy integer covariance is accepted."""
        out = estimate_total_harvest(
            effort_est, cpue_est, by="location",
            variance_mode="correlated", covariance=np.int64(0),
        )
        assert out.loc[0, "standard_error"] ** 2 == pytest.approx(125.0)

    def test_both_correlation_and_covariance(self, effort_est, cpue_est):
        """Giving both is contradictory."""
        with pytest.raises(InputValidationError, match="not both"):
            estimate_total_harvest(
                effort_est, cpue_est, by="location",
                variance_mode="correlated", correlation=0.1, covariance=0.1,
            )

    def test_missing_key_column(self, effort_est, cpue_est):
        """Join keys must be in both tables."""
        with pytest.raises(InputValidationError, match="date"):
            estimate_total_harvest(effort_est, cpue_est, by=("location", "date"))
