# src/ecobin/modem/gsm7.py

"""
GSM 03.38 default alphabet helpers.

SMS budgets are counted in septets: basic-table characters take one, extension-table
characters take two (escape + code). Anything outside both tables is replaced so the
message never silently switches the modem to UCS-2.
"""

from __future__ import annotations

BASIC = (
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞ\x1bÆæßÉ !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÑÜ§¿abcdefghijklmnopqrstuvwxyzäöñüà"
)
ESCAPE = 0x1B
EXTENSION = {
    "\f": 0x0A,
    "^": 0x14,
    "{": 0x28,
    "}": 0x29,
    "\\": 0x2F,
    "[": 0x3C,
    "~": 0x3D,
    "]": 0x3E,
    "|": 0x40,
    "€": 0x65,
}

_BASIC_INDEX = {ch: i for i, ch in enumerate(BASIC) if i != ESCAPE}

# Common typographic characters that phones and dashboards insert.
_REPLACEMENTS = {
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "–": "-",
    "—": "-",
    "…": "...",
    " ": " ",
    "\t": " ",
    "`": "'",
}

SINGLE_SEGMENT = 160
CONCAT_SEGMENT = 153


def is_gsm7(ch: str) -> bool:
    return ch in _BASIC_INDEX or ch in EXTENSION


def sanitize(text: str, replacement: str = "?") -> str:
    """Map text onto the GSM default alphabet."""
    out: list[str] = []
    for ch in text:
        if is_gsm7(ch):
            out.append(ch)
        elif ch in _REPLACEMENTS:
            out.append(_REPLACEMENTS[ch])
        else:
            out.append(replacement)
    return "".join(out)


def char_septets(ch: str) -> int:
    return 2 if ch in EXTENSION else 1


def septet_length(text: str) -> int:
    return sum(char_septets(ch) for ch in text)


def segment_count(text: str) -> int:
    n = septet_length(text)
    if n <= SINGLE_SEGMENT:
        return 1
    return -(-n // CONCAT_SEGMENT)


def truncate_septets(text: str, limit: int) -> str:
    """Longest prefix of text whose septet length is <= limit."""
    used = 0
    for i, ch in enumerate(text):
        used += char_septets(ch)
        if used > limit:
            return text[:i]
    return text


def encode_septets(text: str) -> list[int]:
    septets: list[int] = []
    for ch in text:
        if ch in EXTENSION:
            septets.extend((ESCAPE, EXTENSION[ch]))
        elif ch in _BASIC_INDEX:
            septets.append(_BASIC_INDEX[ch])
        else:
            raise ValueError(f"character {ch!r} is not in the GSM 7-bit alphabet")
    return septets


def pack_septets(septets: list[int], fill_bits: int = 0) -> bytes:
    """Pack 7-bit values into octets, LSB first, after `fill_bits` zero bits."""
    out = bytearray()
    acc = 0
    nbits = fill_bits
    for s in septets:
        acc |= (s & 0x7F) << nbits
        nbits += 7
        while nbits >= 8:
            out.append(acc & 0xFF)
            acc >>= 8
            nbits -= 8
    if nbits > 0:
        out.append(acc & 0xFF)
    return bytes(out)


def split_for_concatenation(text: str, per_part: int = CONCAT_SEGMENT) -> list[str]:
    """Split text into parts of at most per_part septets without breaking escapes."""
    parts: list[str] = []
    current: list[str] = []
    used = 0
    for ch in text:
        n = char_septets(ch)
        if used + n > per_part:
            parts.append("".join(current))
            current, used = [], 0
        current.append(ch)
        used += n
    if current or not parts:
        parts.append("".join(current))
    return parts
