"""
Mock Data for the creel survey estimators.

Provides a small synthetic season: a sampling calendar, a day frame,
interviews (wide and long by species) and three kinds of angler counts.
Every generator is seeded so tests see the same tables on every run.
"""

from typing import List

import numpy as np
import pandas as pd


DATES = ["2024-06-01", "2024-06-02", "2024-06-03", "2024-06-04", "2024-06-05", "2024-06-06"]
FRAME_DATES = DATES + ["2024-06-07", "2024-06-08", "2024-06-09", "2024-06-10"]
LOCATIONS = ["North Ramp", "South Ramp"]
SHIFTS = ["AM", "PM"]
SPECIES = ["walleye", "perch", "bass"]


def _day_type(date: str) -> str:
    """June 1-2 and 8-9 2024 fall on weekends."""
    return "weekend" if date[-2:] in ("01", "02", "08", "09") else "weekday"


def get_calendar(dates: List[str] = None) -> pd.DataFrame:
    """
    Return the sampling calendar: one row per date x shift x location.

    Returns:
        DataFrame with 'date', 'day_type', 'shift_block', 'location',
        'target_sample' and 'actual_sample'.
    """
    dates = DATES if dates is None else dates
    rows = []
    for date in dates:
        for shift in SHIFTS:
            for loc in LOCATIONS:
                rows.append({
                    "date": date,
                    "day_type": _day_type(date),
                    "shift_block": shift,
                    "location": loc,
                    "target_sample": 10 if _day_type(date) == "weekend" else 6,
                    "actual_sample": 4,
                })
    return pd.DataFrame(rows)


def get_day_frame(n_sampled: int = len(DATES)) -> pd.DataFrame:
    """
    Return the day-level sampling frame (10 days, the first *n_sampled* sampled).

    Returns:
        DataFrame with 'date', 'day_type' and boolean 'sampled'.
    """
    return pd.DataFrame({
        "date": FRAME_DATES,
        "day_type": [_day_type(d) for d in FRAME_DATES],
        "sampled": [i < n_sampled for i in range(len(FRAME_DATES))],
    })


def get_interviews(seed: int = 42, per_stratum: int = 4) -> pd.DataFrame:
    """
    Generate interviews: *per_stratum* per date x shift x location.

    Catch is Poisson with a rate of 0.8 fish per angler-hour at the North
    Ramp and 0.5 at the South Ramp.  About a third of trips are incomplete
    (roving intercepts); planned trip length is never shorter than the time
    already fished.

    Returns:
        DataFrame with one row per interview.
    """
    rng = np.random.default_rng(seed)
    rows = []
    iid = 0
    for date in DATES:
        for shift in SHIFTS:
            for loc in LOCATIONS:
                rate = 0.8 if loc == "North Ramp" else 0.5
                for _ in range(per_stratum):
                    hours = float(np.round(rng.uniform(0.5, 6.0), 2))
                    party = int(rng.integers(1, 4))
                    catch = int(rng.poisson(rate * hours))
                    kept = int(rng.binomial(catch, 0.6))
                    rows.append({
                        "interview_id": iid,
                        "date": date,
                        "day_type": _day_type(date),
                        "shift_block": shift,
                        "location": loc,
                        "species": "walleye",
                        "hours_fished": hours,
                        "party_size": party,
                        "catch_total": catch,
                        "catch_kept": kept,
                        "catch_released": catch - kept,
                        "total_trip_effort": float(np.round(hours + rng.uniform(0.0, 3.0), 2)),
                        "trip_complete": bool(rng.random() > 0.35),
                    })
                    iid += 1
    return pd.DataFrame(rows)


def get_species_interviews(seed: int = 7) -> pd.DataFrame:
    """
    Long interview table: one row per interview x species caught.

    Interviews that caught nothing keep a single 'walleye' row with zero
    catch so that every interview appears at least once.
    """
    rng = np.random.default_rng(seed)
    base = get_interviews(seed=seed, per_stratum=2)
    rows = []
    for rec in base.to_dict("records"):
        caught = [s for s in SPECIES if rng.random() < 0.5]
        if not caught:
            caught = ["walleye"]
        for species in caught:
            row = dict(rec)
            row["species"] = species
            row["catch_total"] = int(rng.poisson(1.5))
            row["catch_kept"] = int(rng.binomial(row["catch_total"], 0.5))
            row["catch_released"] = row["catch_total"] - row["catch_kept"]
            rows.append(row)
    return pd.DataFrame(rows)


def get_counts(seed: int = 3, counts_per_block: int = 3) -> pd.DataFrame:
    """
    Instantaneous counts: *counts_per_block* snapshots per date x shift x location.

    Each snapshot covers 15 minutes of a 240-minute shift block; the fishing
    day is both blocks, 480 minutes.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for date in DATES:
        busy = 12 if _day_type(date) == "weekend" else 6
        for shift in SHIFTS:
            for loc in LOCATIONS:
                for k in range(counts_per_block):
                    rows.append({
                        "date": date,
                        "day_type": _day_type(date),
                        "shift_block": shift,
                        "location": loc,
                        "time": 60.0 * k,
                        "count": int(rng.poisson(busy)),
                        "interval_minutes": 15,
                        "block_total_minutes": 240,
                        "total_day_minutes": 480,
                    })
    return pd.DataFrame(rows)


def get_progressive_counts(seed: int = 5, passes: int = 2) -> pd.DataFrame:
    """
    Progressive (roving) counts: *passes* circuits per date x location, each
    counting anglers at minutes 0, 30, 60 and 90 of the circuit.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for date in DATES:
        for loc in LOCATIONS:
            for p in range(passes):
                for minute in (0.0, 30.0, 60.0, 90.0):
                    rows.append({
                        "date": date,
                        "day_type": _day_type(date),
                        "location": loc,
                        "pass_id": p + 1,
                        "time": 120.0 * p + minute,
                        "count": int(rng.poisson(8)),
                    })
    return pd.DataFrame(rows)


def get_busroute_counts(seed: int = 11) -> pd.DataFrame:
    """
    Bus-route stop counts: two stops per date x location with the minutes
    the clerk waited and the stop's inclusion probability.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for date in DATES:
        for loc in LOCATIONS:
            for stop, prob in (("A", 0.5), ("B", 0.25)):
                rows.append({
                    "date": date,
                    "location": loc,
                    "stop": stop,
                    "count": int(rng.poisson(4)),
                    "route_minutes": 30,
                    "inclusion_prob": prob,
                })
    return pd.DataFrame(rows)
