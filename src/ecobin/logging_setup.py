# src/ecobin/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

APP_LOGGER = "ecobin"
MODEM_LOGGER = "ecobin.modem"

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _is_modem(record: logging.LogRecord) -> bool:
    return record.name == MODEM_LOGGER or record.name.startswith(MODEM_LOGGER + ".")


class _ConsoleNoiseFilter(logging.Filter):
    """
    The console is shared with the operator prompt:
    - ecobin logs pass
    - modem records (one per AT exchange at DEBUG) only from WARNING
    - everything else, python warnings included, only from ERROR
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if _is_modem(record):
            return record.levelno >= logging.WARNING
        if record.name.startswith(APP_LOGGER + "."):
            return True
        return record.levelno >= logging.ERROR


class _AtTraceFilter(logging.Filter):
    """Only modem records; they form the AT transcript used to diagnose carrier issues."""

    def filter(self, record: logging.LogRecord) -> bool:
        return _is_modem(record)


def _file_handler(path: Path, level: int, fmt: logging.Formatter) -> logging.Handler:
    fh = logging.FileHandler(str(path), encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(fmt)
    return fh


def setup_logging(
    *,
    log_dir: str | Path = ".local/ecobin",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    at_trace: bool = True,
) -> None:
    """
    Handlers:
    - console: filtered for the operator
    - <log_dir>/ecobin.log: everything at file_level
    - <log_dir>/modem.log: AT transcript only (when at_trace)

    Call once, before the first record is emitted.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    root.addHandler(_file_handler(log_dir / "ecobin.log", file_level, fmt))

    if at_trace:
        trace = _file_handler(log_dir / "modem.log", logging.DEBUG, fmt)
        trace.addFilter(_AtTraceFilter())
        root.addHandler(trace)

    logging.captureWarnings(True)

    # pyserial port enumeration logs at DEBUG.
    logging.getLogger("serial").setLevel(logging.INFO)
