"""Logging configuration for the progress engine.

WHAT WE LOG
-------------
Every state change the engine makes is a log line: a topic completed,
coins awarded (or a duplicate award skipped), a week unlocked, a quiz
graded.  Together with the ledger these lines answer the support
question "why is this learner still locked out of week 3?" without a
database shell.

Services log with %-style arguments and pass the identifiers they are
working on through ``extra=``:

    logger.info(
        "Week unlocked user=%s week=%s", user_id, week_id,
        extra={"user_id": user_id, "week_id": str(week_id)},
    )

WHY TWO FORMATTERS
--------------------
  _ContainerFormatter: human-readable, single-line, for local dev.
    WARNING and above get a [file:line] suffix so the guard clause that
    fired is easy to find.

  _JsonFormatter: one JSON object per line, for production log
    pipelines.  The ``extra=`` fields become top-level keys, so
    ``user_id == "u-42" AND week_id == "..."`` is a plain filter rather
    than a regex over free text.

    Set LOG_JSON=true to switch to JSON output.
"""

from __future__ import annotations

import json
import logging
import sys


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter tuned for container stdout."""

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        ms = int(record.msecs)
        # Insert .NNN before the timezone offset (last 5 chars: +0000)
        return f"{base[:-5]}.{ms:03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            self._style._fmt = self._BASE_FMT + self._LOC_SUFFIX
        else:
            self._style._fmt = self._BASE_FMT
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """JSON Lines formatter.

    Request fields come from RequestContextMiddleware and its logging
    filter; engine fields come from the ``extra=`` of service log calls.
    """

    _CONTEXT_FIELDS = (
        # request
        "request_id",
        "method",
        "path",
        "status_code",
        "duration_ms",
        # engine
        "user_id",
        "cohort_id",
        "week_id",
        "lesson_id",
        "topic_id",
        "quiz_id",
        "attempt_id",
        "source",
        "source_id",
        "amount",
        "error",
    )

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self._CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None and value != "-":
                log_entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure the root logger for container environments.

    Args:
        level_name: Log level string (debug/info/warning/error)
        json_format: Emit JSON lines instead of human-readable text.
                     Controlled by LOG_JSON in Settings.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # Keep third-party loggers from flooding at DEBUG
    for name in (
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "httpcore",
        "httpx",
        "sqlalchemy.engine",
    ):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
