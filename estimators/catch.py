"""Design-weighted catch totals per group."""

import logging
from typing import Sequence

import pandas as pd

from config import DEFAULT_CONF_LEVEL, DEFAULT_RESPONSE
from data.schemas import normalize_by, require_columns
from models.design import SurveyDesign
from models.errors import ComputationGap, check_conf_level
from models.estimate import EstimateRecord, records_to_frame
from survey.variance import group_positions, survey_total


logger = logging.getLogger(__name__)


def estimate_catch(
    design: SurveyDesign,
    by: Sequence[str] = (),
    response: str = DEFAULT_RESPONSE,
    conf_level: float = DEFAULT_CONF_LEVEL,
) -> pd.DataFrame:
    """Estimate the total of *response* (catch, kept, released) per group.

    Rows with a missing *response* are left out of the total; a group with no
    usable rows is reported as NA.
    """
    check_conf_level(conf_level)
    by = normalize_by(by)
    require_columns(design.data, list(by) + [response], "estimate_catch")

    y = design.data[response].to_numpy(dtype=float)
    label = f"catch_total:{response}"
    records = []
    for keys, positions in group_positions(design.data, by):
        diag = {"n_rows": int(len(positions))}
        res = survey_total(design, y, positions)
        diag["n_missing_response"] = int(len(positions) - res.n)
        if res.n == 0:
            gap = ComputationGap("no_usable_rows", f"every '{response}' value is missing")
            records.append(EstimateRecord.gap(keys, gap, 0, label, diag))
            continue
        diag["variance_method"] = res.method
        records.append(EstimateRecord.from_estimate(
            keys, res.estimate, res.se, res.n, label, conf_level, diag,
        ))
    logger.info("catch totals for '%s': %d group(s)", response, len(records))
    return records_to_frame(records, by)
