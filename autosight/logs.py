"""Logging setup for the ``autosight`` logger tree.

Every module logs through ``logging.getLogger(__name__)``, so all records
land under the ``autosight`` logger. Applications (the scripts, a host
integration) call ``configure_logging`` once at startup. It only touches
that package logger: handlers the host put on the root logger are left
alone, and calling it again swaps out just the handlers it installed.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

PACKAGE_LOGGER = "autosight"
TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; exceptions go in an ``exc`` field."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _is_ours(handler: logging.Handler) -> bool:
    return getattr(handler, "_autosight", False)


def configure_logging(
    level: str | int = "INFO",
    *,
    json_lines: bool = False,
    logfile: str | Path | None = None,
) -> logging.Logger:
    """Send ``autosight`` records to stderr and optionally to a file.

    ``level`` is a name ("DEBUG") or a number. With ``json_lines`` each
    record is a JSON object, otherwise a one-line text format. Returns the
    package logger.
    """
    formatter: logging.Formatter = (
        JsonLineFormatter() if json_lines else logging.Formatter(TEXT_FORMAT)
    )
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if logfile is not None:
        path = Path(logfile)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logger = logging.getLogger(PACKAGE_LOGGER)
    for old in [h for h in logger.handlers if _is_ours(h)]:
        logger.removeHandler(old)
        old.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._autosight = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    logger.propagate = False
    return logger
