"""Log routing for the estimator packages.

Estimator modules log through ``logging.getLogger(__name__)`` and never
configure handlers themselves.  ``configure_logging`` attaches one handler to
the package loggers named in ``config.PACKAGE_LOGGERS``; the root logger and
any application handlers are left alone.
"""

import json
import logging
import sys
from typing import IO, Any, Dict, Optional

from config import LOG_DATEFMT, LOG_FORMAT, PACKAGE_LOGGERS


_HANDLER_NAME = "creel-estimation"


class _JsonFormatter(logging.Formatter):
    """One JSON object per record; data-quality warnings are flagged."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, datefmt=LOG_DATEFMT),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if getattr(record, "data_quality", False):
            payload["data_quality"] = True
        return json.dumps(payload, sort_keys=True)


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    stream: Optional[IO[str]] = None,
) -> logging.Handler:
    """Route estimator log records to *stream*.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: Level name (case-insensitive). Unknown names fall back to INFO.
        json_format: Emit one JSON object per line instead of plain text.
        stream: Destination; defaults to stdout.

    Returns:
        The installed handler.
    """
    level_value = getattr(logging, level.upper(), logging.INFO)
    if not isinstance(level_value, int):
        level_value = logging.INFO

    handler = logging.StreamHandler(sys.stdout if stream is None else stream)
    handler.set_name(_HANDLER_NAME)
    if json_format:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))

    for name in PACKAGE_LOGGERS:
        pkg_logger = logging.getLogger(name)
        for old in [h for h in pkg_logger.handlers if h.get_name() == _HANDLER_NAME]:
            pkg_logger.removeHandler(old)
        pkg_logger.addHandler(handler)
        pkg_logger.setLevel(level_value)
    return handler
