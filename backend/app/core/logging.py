"""Logging configuration for the ExpenseFlow application."""

from __future__ import annotations

import logging
import os
import sys
import time
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"


def _level_from_env(default: int = logging.INFO) -> int:
    name = os.getenv("LOG_LEVEL", "").strip().upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def setup_logging(level: Optional[int] = None) -> logging.Logger:
    """Configure the ``expenseflow`` logger tree once. ``LOG_LEVEL`` overrides the default."""
    logger = logging.getLogger("expenseflow")
    if logger.handlers:
        return logger

    level = level if level is not None else _level_from_env()
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = "expenseflow") -> logging.Logger:
    return logging.getLogger(name)


def format_context(context: dict[str, Any]) -> str:
    """Render ``key=value`` pairs in a stable order for log lines."""
    return " ".join(f"{key}={context[key]}" for key in sorted(context))


class LogContext:
    """Log the start, outcome and duration of an operation.

    Failures are logged by exception class only. Messages of errors raised
    inside ledger code may quote user data, so they never reach the log.
    """

    def __init__(self, logger: logging.Logger, operation: str, **context: Any) -> None:
        self.logger = logger
        self.operation = operation
        self.context = context
        self._started = 0.0

    def _suffix(self) -> str:
        rendered = format_context(self.context)
        return f" [{rendered}]" if rendered else ""

    def __enter__(self) -> "LogContext":
        self._started = time.perf_counter()
        self.logger.info(f"Starting {self.operation}{self._suffix()}")
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: Any) -> bool:
        elapsed_ms = (time.perf_counter() - self._started) * 1000
        if exc_type is not None:
            self.logger.error(f"Failed {self.operation} after {elapsed_ms:.0f}ms: {exc_type.__name__}{self._suffix()}")
        else:
            self.logger.info(f"Completed {self.operation} in {elapsed_ms:.0f}ms{self._suffix()}")
        return False
