"""
Error and diagnostic types shared by the estimators.

Three tiers:
    - InputValidationError: fatal, raised before any computation starts.
    - DataQualityWarning: non-fatal, emitted through ``warnings`` and the log.
    - ComputationGap: per-group, stored in the diagnostics of an NA row.
"""

import logging
import numbers
import warnings
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np


GAP_KEY = "computation_gap"


class InputValidationError(ValueError):
    """Invalid input: missing column, bad parameter or contradictory options.

    Args:
        message: What is wrong.
        parameter: Offending parameter or column name.
        hint: One-line remediation hint.
    """

    def __init__(
        self,
        message: str,
        parameter: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        self.parameter = parameter
        self.hint = hint
        text = message
        if parameter:
            text = f"{text} (parameter: '{parameter}')"
        if hint:
            text = f"{text}. Hint: {hint}"
        super().__init__(text)


class DataQualityWarning(UserWarning):
    """Non-fatal data problem (truncation, corrected values, excluded rows)."""


@dataclass(frozen=True)
class ComputationGap:
    """Why a single group could not be estimated."""

    reason: str
    detail: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"reason": self.reason, "detail": self.detail}


def warn_data_quality(logger: logging.Logger, message: str) -> None:
    """Log *message* at WARNING and emit it as a DataQualityWarning."""
    logger.warning(message, extra={"data_quality": True})
    warnings.warn(message, DataQualityWarning, stacklevel=3)


def is_number(value) -> bool:
    """True for real scalars, numpy ones included; False for bools."""
    return isinstance(value, numbers.Real) and not isinstance(value, (bool, np.bool_))


def check_conf_level(conf_level: float) -> None:
    """Raise unless 0 < conf_level < 1."""
    if not is_number(conf_level) or not 0.0 < conf_level < 1.0:
        raise InputValidationError(
            f"conf_level must be strictly between 0 and 1, got {conf_level!r}",
            parameter="conf_level",
            hint="use a level such as 0.90 or 0.95",
        )
