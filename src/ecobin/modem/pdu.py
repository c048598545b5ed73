# src/ecobin/modem/pdu.py

"""
SMS-SUBMIT PDU encoding (3GPP TS 23.040) for GSM 7-bit text.

Used for the PDU-mode fallback: concatenated messages are sent as one PDU per part,
linked by an 8-bit-reference concatenation header.
"""

from __future__ import annotations

from dataclasses import dataclass

from . import gsm7

_FO_SUBMIT_VP_RELATIVE = 0x11
_FO_UDHI = 0x40
_VALIDITY_4_DAYS = 0xAA

_UDH_CONCAT_LEN = 6  # UDHL + IEI + IEDL + ref + total + seq


@dataclass(slots=True, frozen=True)
class Pdu:
    hex: str
    # Octets after the SMSC field; the value AT+CMGS expects in PDU mode.
    tpdu_length: int


def encode_address(number: str) -> str:
    """Destination address field: digit count, type of number, swapped semi-octets."""
    international = number.startswith("+")
    digits = "".join(ch for ch in number if ch.isdigit())
    if not digits:
        raise ValueError(f"invalid phone number: {number!r}")
    toa = 0x91 if international else 0x81
    padded = digits + ("F" if len(digits) % 2 else "")
    swapped = "".join(padded[i + 1] + padded[i] for i in range(0, len(padded), 2))
    return f"{len(digits):02X}{toa:02X}{swapped}"


def encode_submit(
    number: str,
    text: str,
    *,
    reference: int = 0,
    part: tuple[int, int] | None = None,
) -> Pdu:
    """
    Encode one SMS-SUBMIT.

    part: (sequence, total) when this PDU is a piece of a concatenated message.
    The SMSC field is left empty ("00") so the modem uses the AT+CSCA address.
    """
    septets = gsm7.encode_septets(text)

    first_octet = _FO_SUBMIT_VP_RELATIVE
    header = b""
    fill_bits = 0
    if part is not None:
        seq, total = part
        first_octet |= _FO_UDHI
        header = bytes((0x05, 0x00, 0x03, reference & 0xFF, total & 0xFF, seq & 0xFF))
        # Pad the header to a septet boundary.
        fill_bits = (7 - (len(header) * 8) % 7) % 7

    header_septets = (len(header) * 8 + fill_bits) // 7
    udl = header_septets + len(septets)
    if udl > gsm7.SINGLE_SEGMENT:
        raise ValueError(f"user data too long for one PDU: {udl} septets")

    body = header + gsm7.pack_septets(septets, fill_bits=fill_bits)
    tpdu = (
        f"{first_octet:02X}"
        "00"  # TP-MR, assigned by the modem
        f"{encode_address(number)}"
        "00"  # TP-PID
        "00"  # TP-DCS: GSM 7-bit
        f"{_VALIDITY_4_DAYS:02X}"
        f"{udl:02X}"
        f"{body.hex().upper()}"
    )
    return Pdu(hex="00" + tpdu, tpdu_length=len(tpdu) // 2)


def encode_message(number: str, text: str, *, reference: int = 0) -> list[Pdu]:
    """Encode text as one PDU, or as linked parts when it exceeds one segment."""
    if gsm7.septet_length(text) <= gsm7.SINGLE_SEGMENT:
        return [encode_submit(number, text)]

    per_part = gsm7.SINGLE_SEGMENT - ((_UDH_CONCAT_LEN * 8 + 6) // 7)
    parts = gsm7.split_for_concatenation(text, per_part=per_part)
    total = len(parts)
    return [
        encode_submit(number, chunk, reference=reference, part=(i, total))
        for i, chunk in enumerate(parts, start=1)
    ]
