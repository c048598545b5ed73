# src/ecobin/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing deployment-specific (port, SMSC, thresholds) is hard-coded in core logic.
- Defaults are safe to run without a modem attached.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "ECOBIN"

DEFAULT_THRESHOLDS = "85:medium,90:high,95:critical"
DEFAULT_BAND_LABELS = "medium:WARNING,high:HIGH,critical:CRITICAL"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def parse_thresholds(raw: str) -> tuple[tuple[float, str], ...]:
    """
    Parse "85:medium,90:high,95:critical" into ((85.0, "medium"), ...), sorted by
    threshold. Priorities must not decrease as the threshold rises.
    """
    bands: list[tuple[float, str]] = []
    for part in raw.replace(";", ",").split(","):
        part = part.strip()
        if not part:
            continue
        value, sep, label = part.partition(":")
        if not sep or not label.strip():
            raise ValueError(f"invalid threshold band: {part!r}")
        bands.append((float(value), label.strip().lower()))
    bands.sort(key=lambda b: b[0])
    if not bands:
        raise ValueError("at least one threshold band is required")
    return tuple(bands)


def parse_labels(raw: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for part in raw.split(","):
        key, sep, label = part.strip().partition(":")
        if sep and key.strip():
            out[key.strip().lower()] = label.strip()
    return out


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Local data paths ----
    data_dir: Path
    tasks_db_path: Path
    staff_file: Path

    # ---- Telemetry ----
    thresholds: tuple[tuple[float, str], ...]
    band_labels: dict[str, str]

    # ---- Modem / SMS ----
    modem_enabled: bool
    modem_port: str
    modem_baud_rate: int
    modem_smsc: str
    modem_timeout_seconds: float
    modem_open_timeout_seconds: float
    sms_max_segments: int
    sms_concatenation: bool
    sms_budget: int
    sms_country_code: str

    @staticmethod
    def from_env() -> "Settings":
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/ecobin"))

        try:
            thresholds = parse_thresholds(_env(_k("THRESHOLDS"), DEFAULT_THRESHOLDS))
        except ValueError:
            logger.warning("Invalid %s; using defaults %s", _k("THRESHOLDS"), DEFAULT_THRESHOLDS)
            thresholds = parse_thresholds(DEFAULT_THRESHOLDS)

        return Settings(
            app_name=_env(_k("APP_NAME"), "ecobin"),
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            data_dir=data_dir,
            tasks_db_path=_env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3"),
            staff_file=_env_path(_k("STAFF_FILE"), data_dir / "staff.json"),
            thresholds=thresholds,
            band_labels=parse_labels(_env(_k("BAND_LABELS"), DEFAULT_BAND_LABELS)),
            modem_enabled=_env_bool(_k("MODEM_ENABLED"), False),
            modem_port=_env(_k("MODEM_PORT"), "/dev/ttyUSB0"),
            modem_baud_rate=_env_int(_k("MODEM_BAUD_RATE"), 9600),
            # Empty: keep whatever SMSC the SIM ships with.
            modem_smsc=_env(_k("MODEM_SMSC"), "").strip(),
            modem_timeout_seconds=_env_float(_k("MODEM_TIMEOUT_SECONDS"), 15.0),
            modem_open_timeout_seconds=_env_float(_k("MODEM_OPEN_TIMEOUT_SECONDS"), 5.0),
            sms_max_segments=max(1, _env_int(_k("SMS_MAX_SEGMENTS"), 2)),
            # Off: every SMS is a single 160-char segment, as the deployed modems require.
            sms_concatenation=_env_bool(_k("SMS_CONCATENATION"), False),
            # 0: derive from segments (160, or 153 per part with concatenation).
            sms_budget=max(0, _env_int(_k("SMS_BUDGET"), 0)),
            sms_country_code=_env(_k("SMS_COUNTRY_CODE"), "63").strip().lstrip("+"),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
