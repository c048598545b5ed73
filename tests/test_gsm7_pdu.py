# tests/test_gsm7_pdu.py

from __future__ import annotations

import pytest

from ecobin.modem import gsm7, pdu


def test_septet_counting_and_segments() -> None:
    assert gsm7.septet_length("abc") == 3
    assert gsm7.septet_length("a€[") == 5
    assert gsm7.segment_count("a" * 160) == 1
    assert gsm7.segment_count("a" * 161) == 2
    assert gsm7.segment_count("a" * 306) == 2
    assert gsm7.segment_count("a" * 307) == 3
    assert gsm7.segment_count("€" * 80) == 1
    assert gsm7.segment_count("€" * 81) == 2


def test_sanitize_replaces_typography_and_unknowns() -> None:
    assert gsm7.sanitize("“Hi” – it’s done…") == '"Hi" - it\'s done...'
    assert gsm7.sanitize("Łódź") == "??d?"
    assert gsm7.sanitize("Señor Müller è à") == "Señor Müller è à"


def test_truncate_never_splits_an_escape_pair() -> None:
    assert gsm7.truncate_septets("ab€", 3) == "ab"
    assert gsm7.truncate_septets("ab€", 4) == "ab€"
    assert gsm7.truncate_septets("abc", 10) == "abc"


def test_split_for_concatenation() -> None:
    parts = gsm7.split_for_concatenation("a" * 200)
    assert [len(p) for p in parts] == [153, 47]
    parts = gsm7.split_for_concatenation("a" * 152 + "€" + "b")
    assert parts == ["a" * 152, "€b"]


def test_pack_septets_known_vector() -> None:
    packed = gsm7.pack_septets(gsm7.encode_septets("hellohello"))
    assert packed.hex().upper() == "E8329BFD4697D9EC37"


def test_encode_septets_rejects_non_gsm() -> None:
    with pytest.raises(ValueError):
        gsm7.encode_septets("ł")


def test_encode_address() -> None:
    assert pdu.encode_address("+639171234567") == "0C91361917325476"
    assert pdu.encode_address("09171234567") == "0B819071214365F7"
    with pytest.raises(ValueError):
        pdu.encode_address("+")


def test_encode_single_submit() -> None:
    item = pdu.encode_submit("+639171234567", "hellohello")
    assert item.hex == "00" + "1100" + "0C91361917325476" + "0000AA" + "0A" + "E8329BFD4697D9EC37"
    assert item.tpdu_length == 23


def test_encode_concatenated_parts() -> None:
    items = pdu.encode_message("+639171234567", "a" * 200, reference=7)
    assert len(items) == 2

    for seq, item in enumerate(items, start=1):
        tpdu = item.hex[2:]
        assert tpdu.startswith("51")  # SMS-SUBMIT + VP + UDHI
        assert f"05000307020{seq}" in tpdu
        assert item.tpdu_length == len(tpdu) // 2

    # UDL counts header septets: 7 for the 6-octet header + fill bit.
    first_udl = int(items[0].hex[2 + 2 + 2 + 16 + 6 : 2 + 2 + 2 + 16 + 8], 16)
    assert first_udl == 7 + 153


def test_short_message_is_one_pdu_without_header() -> None:
    items = pdu.encode_message("+639171234567", "Empty now")
    assert len(items) == 1
    assert items[0].hex.startswith("0011")
