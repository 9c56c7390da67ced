"""
Replicate-weight generation.

Both schemes resample primary sampling units (PSUs) within strata and return
a new ``SurveyDesign`` carrying an (n, R) replicate-weight matrix:

    - bootstrap: rescaled bootstrap, ``n_h - 1`` PSU draws with replacement
      per stratum, factor ``n_h / (n_h - 1) * m_hj``, variance scale 1/R;
    - jackknife: stratified delete-one-PSU (JKn), one replicate per PSU,
      ``rscale = (n_h - 1) / n_h``.

Strata with a single PSU cannot be resampled and keep factor 1 in every
replicate, matching the certainty floor of the linearized variance.
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd

from config import DEFAULT_BOOTSTRAP_REPLICATES
from models.design import SurveyDesign
from models.errors import InputValidationError
from models.methods import ReplicateMethod


logger = logging.getLogger(__name__)


def _psu_layout(design: SurveyDesign):
    """Dense PSU index per row plus the stratum of each PSU."""
    frame = pd.DataFrame({"h": design.stratum_codes(), "j": design.psu_codes()})
    psu_index = frame.groupby(["h", "j"], sort=True).ngroup().to_numpy()
    psu_stratum = frame.groupby(["h", "j"], sort=True)["h"].first().to_numpy()
    return psu_index, psu_stratum


def _bootstrap_factors(psu_stratum: np.ndarray, replicates: int, rng) -> np.ndarray:
    n_psu = len(psu_stratum)
    factors = np.ones((n_psu, replicates))
    for h in np.unique(psu_stratum):
        members = np.flatnonzero(psu_stratum == h)
        n_h = len(members)
        if n_h < 2:
            continue
        draws = rng.multinomial(n_h - 1, np.full(n_h, 1.0 / n_h), size=replicates)
        factors[members, :] = (n_h / (n_h - 1)) * draws.T
    return factors


def _jackknife_factors(psu_stratum: np.ndarray):
    n_psu = len(psu_stratum)
    columns = []
    rscales = []
    for h in np.unique(psu_stratum):
        members = np.flatnonzero(psu_stratum == h)
        n_h = len(members)
        if n_h < 2:
            continue
        for dropped in members:
            col = np.ones(n_psu)
            col[members] = n_h / (n_h - 1)
            col[dropped] = 0.0
            columns.append(col)
            rscales.append((n_h - 1) / n_h)
    if not columns:
        return np.empty((n_psu, 0)), np.empty(0)
    return np.column_stack(columns), np.asarray(rscales)


def with_replicate_weights(
    design: SurveyDesign,
    replicates: Optional[int] = None,
    method="bootstrap",
    seed: Optional[int] = None,
) -> SurveyDesign:
    """Attach replicate weights to *design*.

    Args:
        design: Design without (or with, to be replaced) replicate weights.
        replicates: Number of bootstrap replicates (default
            ``DEFAULT_BOOTSTRAP_REPLICATES``).  The jackknife count is fixed
            by the number of PSUs, so passing it there is an error.
        method: "bootstrap" or "jackknife".
        seed: Seed for ``numpy.random.default_rng``; same seed, same weights.

    Returns:
        New design whose replicate weights are the base weights times the
        per-PSU resampling factors.

    Raises:
        InputValidationError: Bad replicate count, or no stratum has two or
            more PSUs to resample.
    """
    method = ReplicateMethod.parse(method, "method")
    psu_index, psu_stratum = _psu_layout(design)

    if method is ReplicateMethod.BOOTSTRAP:
        if replicates is None:
            replicates = DEFAULT_BOOTSTRAP_REPLICATES
        if not isinstance(replicates, (int, np.integer)) or replicates < 2:
            raise InputValidationError(
                f"replicates must be an integer >= 2, got {replicates!r}",
                parameter="replicates",
                hint="use a few hundred bootstrap replicates",
            )
        rng = np.random.default_rng(seed)
        factors = _bootstrap_factors(psu_stratum, int(replicates), rng)
        rscales = np.ones(int(replicates))
        scale = 1.0 / int(replicates)
    else:
        if replicates is not None:
            raise InputValidationError(
                "The jackknife builds one replicate per PSU; replicates cannot be set",
                parameter="replicates",
                hint="omit replicates when method='jackknife'",
            )
        factors, rscales = _jackknife_factors(psu_stratum)
        scale = 1.0
        if factors.shape[1] == 0:
            raise InputValidationError(
                "No stratum has two or more PSUs to delete",
                parameter="method",
                hint="use linearization, or a design with several PSUs per stratum",
            )

    rep = np.asarray(design.weights)[:, None] * factors[psu_index, :]
    logger.info(
        "%s replicate weights: %d replicates over %d PSUs",
        method.value, rep.shape[1], len(psu_stratum),
    )
    return SurveyDesign(
        data=design.data,
        weights=design.weights,
        strata=design.strata,
        clusters=design.clusters,
        strata_vars=design.strata_vars,
        design_type=design.design_type,
        replicate_weights=rep,
        replicate_method=method.value,
        replicate_scale=scale,
        replicate_rscales=rscales,
        metadata=dict(design.metadata),
    )
