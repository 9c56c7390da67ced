"""
Column contracts for the interview, count and calendar tables.

The tables are assumed to be schema-checked upstream; these helpers only
assert that the specific columns an estimator is about to use are present,
and fail fast with the missing names when they are not.
"""

from typing import Iterable, Optional, Sequence, Tuple

import pandas as pd

from models.errors import InputValidationError


def require_columns(frame: pd.DataFrame, columns: Iterable[str], context: str) -> None:
    """Raise if any of *columns* is absent from *frame*.

    Args:
        frame: Table to check.
        columns: Column names the caller is about to use.
        context: Caller name for the error message.

    Raises:
        InputValidationError: Listing every missing column.
    """
    if not isinstance(frame, pd.DataFrame):
        raise InputValidationError(
            f"{context}: expected a pandas DataFrame, got {type(frame).__name__}",
            parameter="data",
            hint="convert the table with pandas.DataFrame(...)",
        )
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise InputValidationError(
            f"{context}: missing required columns {missing}",
            parameter=missing[0],
            hint=f"add {', '.join(missing)} or pass the matching column-name argument",
        )


def resolve_column(
    frame: pd.DataFrame,
    candidates: Sequence[str],
    context: str,
    required: bool = True,
) -> Optional[str]:
    """Return the first of *candidates* present in *frame*.

    Raises:
        InputValidationError: If none is present and *required* is True.
    """
    if isinstance(candidates, str):
        candidates = (candidates,)
    for name in candidates:
        if name in frame.columns:
            return name
    if required:
        raise InputValidationError(
            f"{context}: none of the columns {list(candidates)} found",
            parameter=candidates[0],
            hint=f"provide one of: {', '.join(candidates)}",
        )
    return None


def normalize_by(by: Optional[Iterable[str]]) -> Tuple[str, ...]:
    """Turn a grouping argument (None, str or sequence) into a tuple."""
    if by is None:
        return ()
    if isinstance(by, str):
        return (by,)
    out = []
    for col in by:
        if col not in out:
            out.append(col)
    return tuple(out)
