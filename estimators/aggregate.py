"""
Species-group CPUE.

Interview tables are often long: one row per interview x species.  To get a
rate for a group of species (e.g. all panfish) the catch of the listed
species is summed within each interview, interviews without any of them
count as zero catch, and CPUE is estimated on the resulting interview-level
design.  Summing before estimating keeps the covariance between species in
the variance, which adding per-species CPUEs would lose.
"""

import logging
from typing import Sequence

import numpy as np
import pandas as pd

from config import DEFAULT_CONF_LEVEL, DEFAULT_EFFORT_COL, DEFAULT_RESPONSE
from data.schemas import normalize_by, require_columns
from estimators.cpue import estimate_cpue
from models.design import SurveyDesign
from models.errors import InputValidationError, warn_data_quality


logger = logging.getLogger(__name__)

SPECIES_GROUP_COL = "species_group"


def collapse_species(
    design: SurveyDesign,
    species_values: Sequence[str],
    catch_col: str,
    species_col: str = "species",
    response: str = DEFAULT_RESPONSE,
    interview_col: str = "interview_id",
) -> SurveyDesign:
    """Interview-level design whose *catch_col* sums *response* over *species_values*.

    Interviews are identified by *interview_col*; without it every row is
    its own interview.  Each interview keeps the weight, stratum and PSU of
    its first row.
    """
    data = design.data
    if interview_col in data.columns:
        ids = data[interview_col]
    else:
        ids = pd.Series(np.arange(len(data)), index=data.index)

    matched = data[species_col].isin(list(species_values)).to_numpy()
    catch = data[response].fillna(0.0).to_numpy(dtype=float)
    summed = pd.Series(np.where(matched, catch, 0.0), index=data.index).groupby(ids, sort=True).sum()
    first = pd.Series(np.arange(len(data)), index=data.index).groupby(ids, sort=True).first()

    collapsed = data.iloc[first.to_numpy()].reset_index(drop=True)
    collapsed[catch_col] = summed.to_numpy()
    return design.take(first.to_numpy(), data=collapsed)


def aggregate_cpue(
    design: SurveyDesign,
    species_values: Sequence[str],
    group_name: str,
    species_col: str = "species",
    by: Sequence[str] = (),
    response: str = DEFAULT_RESPONSE,
    effort_col: str = DEFAULT_EFFORT_COL,
    interview_col: str = "interview_id",
    mode="ratio_of_means",
    conf_level: float = DEFAULT_CONF_LEVEL,
    **cpue_options,
) -> pd.DataFrame:
    """CPUE for a group of species, carried through one interview-level design.

    Args:
        design: Design over interview x species rows.
        species_values: Species to sum.
        group_name: Label for the group; written to the ``species_group``
            output column and used to name the summed catch column.
        species_col: Species column.
        by: Grouping columns (interview-level).
        response: Catch column to sum.
        effort_col: Effort column (interview-level, repeated per species row).
        interview_col: Interview identifier.
        mode: CPUE mode passed to ``estimate_cpue``.
        conf_level: Wald interval level.
        **cpue_options: Further ``estimate_cpue`` keyword arguments.

    Returns:
        ``estimate_cpue`` output with a leading ``species_group`` column.

    Raises:
        InputValidationError: Empty species list, missing columns, or none of
            the species present in the data.
    """
    species_values = list(species_values)
    if not species_values:
        raise InputValidationError(
            "species_values cannot be empty",
            parameter="species_values",
            hint="list at least one species to aggregate",
        )
    by = normalize_by(by)
    require_columns(design.data, [species_col, response, effort_col] + list(by), "aggregate_cpue")

    available = set(design.data[species_col].dropna().unique().tolist())
    present = [s for s in species_values if s in available]
    missing = [s for s in species_values if s not in available]
    if not present:
        raise InputValidationError(
            f"None of the species {species_values} are in the data",
            parameter="species_values",
            hint=f"available species: {sorted(map(str, available))}",
        )
    if missing:
        warn_data_quality(
            logger,
            f"Species {missing} not found in the data; they contribute zero catch",
        )

    catch_col = f"catch_{group_name}"
    collapsed = collapse_species(
        design, present, catch_col,
        species_col=species_col, response=response, interview_col=interview_col,
    )
    logger.info(
        "species group '%s': %d rows collapsed to %d interviews",
        group_name, design.n_rows, collapsed.n_rows,
    )
    out = estimate_cpue(
        collapsed,
        by=by,
        response=catch_col,
        effort_col=effort_col,
        mode=mode,
        conf_level=conf_level,
        **cpue_options,
    )
    out.insert(0, SPECIES_GROUP_COL, group_name)
    return out
