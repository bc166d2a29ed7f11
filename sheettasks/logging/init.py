from __future__ import annotations

import logging
import sys
from typing import TextIO

"""Console logging for export runs.

Each record is rendered as `<LABEL> <message>` where LABEL is one of
DEBUG|INFO|WARN|ERROR|SUMMARY. Row outcomes ("Row 12: Skipped because ...")
and the per-batch SUMMARY line are what an operator reads to follow a run
that spans several scheduled invocations, so the format is kept flat and
grep-friendly.

Modules log through logging.getLogger(__name__); the records propagate into
the "sheettasks" logger, which owns the only handler.
"""

__all__ = [
    "LOGGER_NAME",
    "SUMMARY_LEVEL",
    "LabeledFormatter",
    "get_logger",
    "log_summary",
    "reset_logging",
    "set_debug",
    "setup_logging",
]

LOGGER_NAME = "sheettasks"

# INFO(20) と WARNING(30) の間
SUMMARY_LEVEL = 25

_LABELS = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    SUMMARY_LEVEL: "SUMMARY",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "CRITICAL",
}

_configured: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """`LABEL message` formatter; unknown levels fall back to their level name."""

    def format(self, record: logging.LogRecord) -> str:
        label = _LABELS.get(record.levelno, record.levelname)
        text = f"{label} {record.getMessage()}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def setup_logging(stream: TextIO | None = None) -> logging.Logger:
    """Configure the application logger once and return it.

    Args:
        stream: Output stream (defaults to sys.stdout at call time)

    Later calls return the already configured logger untouched.
    """
    global _configured
    if _configured is not None:
        return _configured

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")
    app_logger = logging.getLogger(LOGGER_NAME)
    for existing in list(app_logger.handlers):
        app_logger.removeHandler(existing)

    console = logging.StreamHandler(stream if stream is not None else sys.stdout)
    console.setFormatter(LabeledFormatter())
    console.setLevel(logging.INFO)
    app_logger.addHandler(console)
    app_logger.setLevel(logging.INFO)
    # root へは流さない (二重出力防止)
    app_logger.propagate = False

    _configured = app_logger
    return app_logger


def get_logger() -> logging.Logger:
    return _configured if _configured is not None else setup_logging()


def set_debug(logger: logging.Logger) -> None:
    logger.setLevel(logging.DEBUG)
    for h in logger.handlers:
        h.setLevel(logging.DEBUG)


def log_summary(message: str) -> None:
    """Emit `message` at SUMMARY level (the label is added by the formatter)."""
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Forget the configured logger so the next setup_logging() starts over (tests)."""
    global _configured
    _configured = None
