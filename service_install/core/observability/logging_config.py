"""
Logging for service-install.

Records emitted while a plan runs carry that plan's id, the same id the
audit ledger stores, so a log file can be matched line for line with
``service-install history``.

Console level:   --debug / -v / -q  >  SVCI_LOG_LEVEL  >  WARNING
File trail:      SVCI_LOG_FILE, at SVCI_LOG_FILE_LEVEL (default DEBUG)

At WARNING the console shows the message alone, which is how rollback
lines (``↩ restored ...``, ``✗ could not undo ...``) reach the user.
"""

from __future__ import annotations

import contextvars
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

ENV_LEVEL = "SVCI_LOG_LEVEL"
ENV_FILE = "SVCI_LOG_FILE"
ENV_FILE_LEVEL = "SVCI_LOG_FILE_LEVEL"

NO_PLAN = "-"

_plan_id: contextvars.ContextVar[str] = contextvars.ContextVar("svci_plan_id", default=NO_PLAN)

# level → (format, datefmt); anything above INFO prints the bare message
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(plan_id)s %(name)s:%(lineno)d: %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(message)s", "%H:%M:%S"),
}
_FMT_FILE = "%(asctime)s %(levelname)-5s [%(plan_id)s] %(name)s: %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


class PlanIdFilter(logging.Filter):
    """Stamp every record with the id of the plan being driven."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.plan_id = _plan_id.get()
        return True


@contextmanager
def plan_context(plan_id: str) -> Iterator[None]:
    """Attribute log records inside the block to ``plan_id``."""
    token = _plan_id.set(plan_id)
    try:
        yield
    finally:
        _plan_id.reset(token)


def current_plan_id() -> str:
    return _plan_id.get()


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = "%(message)s", None
    for threshold in sorted(_CONSOLE_FORMATS):
        if level <= threshold:
            fmt, datefmt = _CONSOLE_FORMATS[threshold]
            break
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    handler.addFilter(PlanIdFilter())
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
    handler.addFilter(PlanIdFilter())
    return handler


def setup_logging(
    level: str | None = None,
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger. Called once by the CLI.

    Arguments left as None fall back to the ``SVCI_*`` environment
    variables, then to the defaults above.
    """
    console_level = _parse_level(level or os.environ.get(ENV_LEVEL))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_console_handler(console_level))
    effective = console_level

    log_file = log_file or os.environ.get(ENV_FILE)
    if log_file:
        file_level = _parse_level(
            log_file_level or os.environ.get(ENV_FILE_LEVEL), default=logging.DEBUG
        )
        root.addHandler(_file_handler(Path(log_file).expanduser(), file_level))
        effective = min(effective, file_level)

    root.setLevel(effective)


def _parse_level(level: str | None, default: int = logging.WARNING) -> int:
    if not level:
        return default
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else default
