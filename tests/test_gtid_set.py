"""
Tests for GTID set parsing and subtraction.
"""

import pytest

from gtidfix.gtid_set import GtidInterval, GtidSet, normalize_gtid_text

UUID_A = "3e11fa47-71ca-11e1-9e33-c80aa9429562"
UUID_B = "4c3f9bde-3a8c-11ee-8f3d-0242ac120003"
UUID_C = "7b0c21f2-3a8c-11ee-8f3d-0242ac120004"


def test_parse_keeps_token_order():
    text = f"{UUID_B}:1-3,{UUID_A}:1-10:12"
    gtid_set = GtidSet.parse(text)

    assert [entry.uuid for entry in gtid_set] == [UUID_B, UUID_A]
    assert gtid_set.entries[1].intervals == (GtidInterval(1, 10), GtidInterval(12, 12))
    assert str(gtid_set) == text


def test_parse_strips_mysql_line_wrapping():
    text = f"{UUID_A}:1-10,\n{UUID_B}:1-3\n"
    assert str(GtidSet.parse(text)) == f"{UUID_A}:1-10,{UUID_B}:1-3"
    assert normalize_gtid_text(" a:1,\n b:2 ") == "a:1,b:2"


def test_parse_empty():
    assert GtidSet.parse("").is_empty()
    assert GtidSet.parse(None).is_empty()
    assert str(GtidSet.parse("\n")) == ""
    assert not GtidSet.parse("")


@pytest.mark.parametrize("text", [
    f"{UUID_A}",
    f"{UUID_A}:",
    f"{UUID_A}:x-3",
    f"{UUID_A}:5-2",
    f"{UUID_A}:0",
    ":1-3",
])
def test_parse_rejects_malformed(text):
    with pytest.raises(ValueError):
        GtidSet.parse(text)


def test_single_transaction_interval_renders_without_range():
    assert str(GtidInterval(7, 7)) == "7"
    assert str(GtidInterval.parse("1-1")) == "1"
    assert str(GtidInterval.parse("2-9")) == "2-9"


def test_subtract_removes_whole_token_when_all_intervals_errant():
    executed = GtidSet.parse(f"{UUID_A}:1-10,{UUID_B}:1-3")
    errant = GtidSet.parse(f"{UUID_B}:1-3")

    assert str(executed.subtract(errant)) == f"{UUID_A}:1-10"


def test_subtract_keeps_non_errant_intervals_of_same_uuid():
    executed = GtidSet.parse(f"{UUID_A}:1-10,{UUID_B}:1-10:20-25")
    errant = GtidSet.parse(f"{UUID_B}:8-10:21")

    assert str(executed.subtract(errant)) == f"{UUID_A}:1-10,{UUID_B}:1-7:20:22-25"


def test_subtract_preserves_order_and_ignores_unknown_uuids():
    executed = GtidSet.parse(f"{UUID_C}:1-2,{UUID_A}:1-5,{UUID_B}:4")
    errant = GtidSet.parse(f"{UUID_A}:1-5,ffffffff-0000-0000-0000-000000000000:1")

    assert str(executed.subtract(errant)) == f"{UUID_C}:1-2,{UUID_B}:4"


def test_subtract_empty_set_is_identity():
    executed = GtidSet.parse(f"{UUID_A}:1-5")
    assert executed.subtract(GtidSet()) == executed
