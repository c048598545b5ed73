# src/ecobin/modem/carrier.py

"""Decode modem/carrier error lines into operator-facing diagnoses."""

from __future__ import annotations

import re
from dataclasses import dataclass

_CMS_RE = re.compile(r"\+CMS ERROR:\s*(\S.*)$", re.IGNORECASE)
_CME_RE = re.compile(r"\+CME ERROR:\s*(\S.*)$", re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class CarrierDiagnosis:
    code: str | None
    diagnosis: str
    description: str


# +CMS ERROR codes (27.005 plus RP causes 0-127 passed through by most modules).
# 325 is not standardised; on the networks this runs on it shows up for "no network
# service", a malformed message, or an SMS-barred SIM.
_CMS = {
    "1": ("invalid_number", "unassigned (unallocated) number"),
    "8": ("sim_restriction", "operator determined barring"),
    "10": ("sim_restriction", "call barred"),
    "21": ("carrier_rejected", "short message transfer rejected"),
    "27": ("invalid_number", "destination out of service"),
    "38": ("no_network", "network out of order"),
    "41": ("no_network", "temporary network failure"),
    "42": ("no_network", "network congestion"),
    "50": ("sim_restriction", "requested facility not subscribed (no SMS plan / credit)"),
    "96": ("invalid_format", "invalid mandatory information"),
    "300": ("modem_failure", "ME failure"),
    "302": ("modem_failure", "operation not allowed"),
    "304": ("invalid_format", "invalid PDU mode parameter"),
    "305": ("invalid_format", "invalid text mode parameter"),
    "310": ("sim_missing", "SIM not inserted"),
    "311": ("sim_locked", "SIM PIN required"),
    "313": ("sim_missing", "SIM failure"),
    "314": ("modem_busy", "SIM busy"),
    "322": ("modem_failure", "memory full"),
    "325": ("carrier_rejected", "no network service, invalid message format or SIM restriction"),
    "330": ("smsc_mismatch", "SMSC address unknown"),
    "331": ("no_network", "no network service"),
    "332": ("no_network", "network timeout"),
    "500": ("unknown", "unknown error"),
}

_CME = {
    "3": ("modem_failure", "operation not allowed"),
    "4": ("modem_failure", "operation not supported"),
    "10": ("sim_missing", "SIM not inserted"),
    "11": ("sim_locked", "SIM PIN required"),
    "13": ("sim_missing", "SIM failure"),
    "14": ("modem_busy", "SIM busy"),
    "30": ("no_network", "no network service"),
    "100": ("unknown", "unknown error"),
}

_TEXT = {
    "no network service": "no_network",
    "sim not inserted": "sim_missing",
    "sim pin required": "sim_locked",
    "operation not allowed": "modem_failure",
}


def decode_error(line: str | None) -> CarrierDiagnosis:
    """
    Map a final error line ("+CMS ERROR: 330", "+CME ERROR: 10", "ERROR") to a
    diagnosis. Verbose error modes (text instead of numbers) are recognised too.
    """
    raw = (line or "").strip()
    if not raw:
        return CarrierDiagnosis(None, "unknown", "no error detail")

    for regex, table, prefix in ((_CMS_RE, _CMS, ""), (_CME_RE, _CME, "CME ")):
        m = regex.search(raw)
        if not m:
            continue
        value = m.group(1).strip()
        if value.isdigit():
            diagnosis, description = table.get(value, ("unknown", f"error {value}"))
            return CarrierDiagnosis(f"{prefix}{value}", diagnosis, description)
        diagnosis = _TEXT.get(value.lower(), "unknown")
        return CarrierDiagnosis(f"{prefix}{value}", diagnosis, value)

    return CarrierDiagnosis(None, "unknown", raw)


def describe_registration(stat: int) -> str:
    """+CREG <stat> values."""
    return {
        0: "not_registered",
        1: "home",
        2: "searching",
        3: "denied",
        4: "unknown",
        5: "roaming",
    }.get(stat, "unknown")
