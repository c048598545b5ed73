# src/ecobin/notify/phone.py

from __future__ import annotations

import re

_NON_DIGIT = re.compile(r"\D")


def normalize_phone(raw: str | None, country_code: str = "63") -> str | None:
    """
    Turn a locally written mobile number into international form.

    "0917 123 4567" -> "+639171234567", "9171234567" -> "+639171234567".
    Numbers already carrying a country code only gain the "+". Empty input -> None.
    """
    digits = _NON_DIGIT.sub("", raw or "")
    if not digits:
        return None

    cc = _NON_DIGIT.sub("", country_code or "")
    if len(digits) == 10 and digits.startswith("9"):
        digits = cc + digits
    elif len(digits) == 11 and digits.startswith("09"):
        digits = cc + digits[1:]

    return "+" + digits
