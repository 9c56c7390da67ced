"""Shared fixtures for the creel survey estimation test suite."""

import sys
import os
import pytest
import numpy as np
import pandas as pd

# Ensure project root is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture
def constant_rate_interviews():
    """Three complete trips that all catch 2 fish per hour."""
    return pd.DataFrame({
        "date": ["2024-06-01"] * 3,
        "location": ["North Ramp"] * 3,
        "catch_total": [2.0, 4.0, 6.0],
        "hours_fished": [1.0, 2.0, 3.0],
        "trip_complete": [True, True, True],
    })


@pytest.fixture
def two_site_interviews():
    """Interviews at two sites with different catch rates."""
    return pd.DataFrame({
        "date": ["2024-06-01"] * 4 + ["2024-06-02"] * 4,
        "location": ["North Ramp", "North Ramp", "South Ramp", "South Ramp"] * 2,
        "catch_total": [3.0, 1.0, 0.0, 2.0, 4.0, 2.0, 1.0, 0.0],
        "hours_fished": [2.0, 1.5, 1.0, 3.0, 2.5, 1.0, 2.0, 1.5],
        "trip_complete": [True, True, False, False, True, True, False, False],
    })


@pytest.fixture
def simple_design(two_site_interviews):
    """Equal-weight design over the two-site interviews."""
    from survey.builders import build_simple_design
    return build_simple_design(two_site_interviews)


@pytest.fixture
def mock_calendar():
    """Sampling calendar for the mock season."""
    from data.mock_data import get_calendar
    return get_calendar()


@pytest.fixture
def mock_interviews():
    """Seeded mock interviews (4 per date x shift x location)."""
    from data.mock_data import get_interviews
    return get_interviews()


@pytest.fixture
def mock_counts():
    """Seeded instantaneous counts for the mock season."""
    from data.mock_data import get_counts
    return get_counts()


@pytest.fixture
def mock_day_frame():
    """Ten-day frame with the six mock dates sampled."""
    from data.mock_data import get_day_frame
    return get_day_frame()


@pytest.fixture
def day_design(mock_day_frame):
    """Day-PSU design stratified by day type."""
    from survey.builders import build_day_design
    return build_day_design(mock_day_frame, day_id="date", strata_vars=("day_type",))


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(0)
