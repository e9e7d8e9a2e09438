# tests/test_accessor.py
"""
Tests for hl7_fhir_bridge.accessor.
"""

import pytest

from hl7_fhir_bridge.accessor import Encoding, FieldAccessor, FieldPath
from hl7_fhir_bridge.hl7_parser import parse_hl7_segments

from conftest import ADT_A01_FULL, ALLERGY_THIRD_BAD


@pytest.fixture
def allergies():
    return FieldAccessor.from_segments(parse_hl7_segments(ALLERGY_THIRD_BAD))


# ------------------------------------------------------------------------------
# FieldPath
# ------------------------------------------------------------------------------


@pytest.mark.parametrize(
    "text, expected",
    [
        ("PID-5-1", FieldPath("PID", 0, 5, 0, 1)),
        ("PID-3(1)-4", FieldPath("PID", 0, 3, 1, 4)),
        ("AL1(2)-3-1", FieldPath("AL1", 2, 3, 0, 1)),
        ("PID-5-1-2", FieldPath("PID", 0, 5, 0, 1, 2)),
        ("PV1", FieldPath("PV1")),
        ("OBSERVATION/OBX(0)-5", FieldPath("OBX", 0, 5, group="OBSERVATION")),
    ],
)
def test_field_path_parse(text, expected):
    assert FieldPath.parse(text) == expected


def test_field_path_str_round_trips_index():
    assert str(FieldPath.parse("AL1(2)-3")) == "AL1(2)-3"
    assert str(FieldPath.parse("PID-3(1)-4")) == "PID(0)-3(1)-4"


@pytest.mark.parametrize("text", ["", "PID-", "pid-5", "PID-x", "PI-5", "PID-5--1"])
def test_field_path_rejects_malformed(text):
    with pytest.raises(ValueError):
        FieldPath.parse(text)


@pytest.mark.parametrize("text", ["AL1(-1)-3", "PID-3(-2)"])
def test_field_path_rejects_negative_index(text):
    with pytest.raises(ValueError):
        FieldPath.parse(text)


def test_field_path_rejects_non_string():
    with pytest.raises(TypeError, match=r"^path must be str"):
        FieldPath.parse(5)


# ------------------------------------------------------------------------------
# Encoding
# ------------------------------------------------------------------------------


def test_encoding_from_msh_reads_custom_delimiters():
    enc = Encoding.from_msh("MSH#$*/%#APP")
    assert (enc.field, enc.component, enc.repetition, enc.escape, enc.subcomponent) == (
        "#",
        "$",
        "*",
        "/",
        "%",
    )
    assert enc.msh2 == "$*/%"


def test_encoding_defaults_for_short_msh():
    assert Encoding.from_msh("MSH") == Encoding()


# ------------------------------------------------------------------------------
# reads
# ------------------------------------------------------------------------------


def test_get_reads_components_and_repetitions():
    acc = FieldAccessor.from_segments(parse_hl7_segments(ADT_A01_FULL))
    assert acc.get("PID-5-1") == "Doe"
    assert acc.get("PID-5-2") == "John"
    # field level reads the first component
    assert acc.get("PID-5") == "Doe"
    assert acc.get("PID-3(1)-1") == "999-99-9999"
    assert acc.get("PID-3(1)-5") == "SS"
    assert acc.count_repetitions("PID-3") == 2
    assert acc.get("MSH-9-2") == "A01"
    assert acc.get("MSH-1") == "|"
    assert acc.get("MSH-2") == "^~\\&"


def test_absent_paths_read_as_none(allergies):
    assert allergies.get("AL1(9)-3-1") is None
    assert allergies.get("PID-99") is None
    assert allergies.get("PID-5(4)-1") is None
    assert allergies.get("PID-5-9") is None
    assert allergies.get("ZZZ-1") is None
    assert allergies.get_segment("AL1(9)") is None


def test_empty_and_null_values_read_as_none():
    acc = FieldAccessor.new()
    pid = acc.add_segment("PID")
    acc.set(pid.path(5), '""', escape=False)
    assert acc.get("PID-5") is None
    assert acc.get("PID-4") is None


def test_segment_indexing(allergies):
    assert allergies.count("AL1") == 4
    assert allergies.get("AL1(0)-3-1") == "PCN"
    assert allergies.get("AL1(2)-3-1") is None
    assert allergies.get("AL1(2)-3-2") == "Unknown"
    assert allergies.get("AL1(3)-3-1") == "SUL"

    handle = allergies.get_segment("AL1(2)")
    assert handle.index == 2
    assert handle.is_root
    assert str(handle.path(3, 1)) == "AL1(2)-3-1"


def test_preceding_and_trailing():
    acc = FieldAccessor.from_segments(
        parse_hl7_segments(
            "MSH|^~\\&|A|B|C|D|20240101||ORU^R01|1|P|2.5\r"
            "OBR|1\rOBX|1\rNTE|1||a\rNTE|2||b\rOBX|2\rOBR|2\rOBX|3\r"
        )
    )
    obx = acc.segments("OBX")
    assert acc.preceding("OBR", obx[2]).index == 1
    assert acc.preceding("OBR", obx[0]).index == 0
    notes = acc.trailing("NTE", obx[0])
    assert [acc.get(n.path(3)) for n in notes] == ["a", "b"]
    assert acc.trailing("NTE", obx[1]) == []


def test_get_unescapes_and_get_raw_does_not():
    acc = FieldAccessor.new()
    nte = acc.add_segment("NTE")
    acc.set(nte.path(3), "a|b^c\nd")
    assert acc.get_raw(nte.path(3)) == "a\\F\\b\\S\\c\\.br\\d"
    assert acc.get(nte.path(3, 1)) == "a|b^c\nd"


def test_segment_text(allergies):
    handle = allergies.get_segment("AL1(1)")
    assert allergies.segment_text(handle) == "AL1|2|FA|PNT^Peanut|MO"


# ------------------------------------------------------------------------------
# group ambiguity
# ------------------------------------------------------------------------------


def _grouped():
    return FieldAccessor._from_lines(
        [
            ("MSH|^~\\&|A|B|C|D|20240101||ORU^R01|1|P|2.5", ()),
            ("NTE|1||root note", ()),
            ("OBR|1", ("ORU_R01_ORDER_OBSERVATION",)),
            (
                "NTE|1||nested note",
                ("ORU_R01_ORDER_OBSERVATION", "ORU_R01_OBSERVATION"),
            ),
        ]
    )


def test_root_occurrences_win_and_ambiguity_is_recorded():
    acc = _grouped()
    assert acc.get("NTE-3") == "root note"
    assert acc.count("NTE") == 1
    assert "NTE" in acc.ambiguous_segments


def test_group_qualified_path_reaches_nested_segment():
    acc = _grouped()
    assert acc.get("OBSERVATION/NTE-3") == "nested note"
    assert acc.count("NTE", group="OBSERVATION") == 1
    # nested-only names are found without qualification
    assert acc.get("OBR-1") == "1"
    assert not acc.get_segment("OBR").is_root
    assert "OBR" not in acc.ambiguous_segments


# ------------------------------------------------------------------------------
# writes
# ------------------------------------------------------------------------------


def test_set_creates_segment_fields_and_components():
    acc = FieldAccessor.new()
    acc.set("PID-5-2", "JOHN")
    acc.set("PID-5-1", "SMITH")
    acc.set("PID-3(1)-1", "B")
    acc.set("PID-3-1", "A")
    assert acc.to_er7().split("\r")[1] == "PID|||A~B||SMITH^JOHN"


def test_set_subcomponent():
    acc = FieldAccessor.new()
    acc.set("OBX-5-1-2", "x")
    assert acc.get_raw("OBX-5") == "&x"


def test_set_ignores_none_and_empty():
    acc = FieldAccessor.new()
    acc.set("PID-5", None)
    acc.set("PID-5", "")
    assert acc.get_segment("PID") is None


def test_set_refuses_msh_encoding_fields():
    acc = FieldAccessor.new()
    with pytest.raises(ValueError):
        acc.set("MSH-2", "####")


def test_set_refuses_pinned_path_to_missing_segment(allergies):
    path = FieldPath("AL1", 0, 3, position=999)
    with pytest.raises(ValueError, match=r"^cannot create a segment"):
        allergies.set(path, "X")


def test_set_by_index_fills_gaps():
    acc = FieldAccessor.new()
    acc.set("NK1(2)-1", "3")
    assert acc.count("NK1") == 3
    assert acc.get("NK1(2)-1") == "3"


def test_add_segment_and_next_set_id():
    acc = FieldAccessor.new()
    assert acc.next_set_id("OBX") == 1
    acc.add_segment("OBX")
    assert acc.next_set_id("OBX") == 2
    with pytest.raises(ValueError, match=r"^invalid segment name"):
        acc.add_segment("obx")


def test_append_er7_keeps_fields():
    acc = FieldAccessor.new()
    handle = acc.append_er7("ZPI|Rex|VIP1")
    assert handle.name == "ZPI"
    assert acc.get("ZPI-2") == "VIP1"


def test_truncate_rolls_back_to_snapshot():
    acc = FieldAccessor.new()
    pid = acc.add_segment("PID")
    acc.set(pid.path(3), "MRN1")
    snapshot = len(acc)
    assert snapshot == 2

    acc.add_segment("ORC")
    acc.add_segment("RXE")
    acc.set("PID-5", "SMITH")
    acc.truncate(snapshot)

    assert len(acc) == 2
    assert acc.count("ORC") == 0
    assert acc.count("RXE") == 0
    assert acc.next_set_id("ORC") == 1
    # writes to surviving segments are kept
    assert acc.get("PID-5") == "SMITH"
    assert acc.to_er7() == "MSH|^~\\&\rPID|||MRN1||SMITH"


def test_truncate_keeps_msh():
    acc = FieldAccessor.new()
    acc.truncate(5)
    assert len(acc) == 1
    with pytest.raises(ValueError, match=r"^cannot truncate the header"):
        acc.truncate(0)


# ------------------------------------------------------------------------------
# rendering
# ------------------------------------------------------------------------------


def test_new_message_renders_msh_header():
    acc = FieldAccessor.new()
    acc.set("MSH-9-1", "ADT")
    assert acc.to_er7() == "MSH|^~\\&|||||||ADT"


def test_to_er7_applies_order_blocks_and_z_segments_last():
    acc = FieldAccessor.new()
    for name in ("ZPI", "OBX", "OBR", "PID", "XYZ", "ORC", "OBR", "OBX"):
        handle = acc.add_segment(name)
        acc.set(handle.path(1), name.lower())
    order = ("MSH", "PID", ("ORC", "OBR", "OBX"))
    names = [s[:3] for s in acc.to_er7(order).split("\r")]
    assert names == ["MSH", "PID", "OBX", "OBR", "ORC", "OBR", "OBX", "XYZ", "ZPI"]


def test_to_er7_separator():
    acc = FieldAccessor.new()
    acc.add_segment("PID")
    acc.set("PID-1", "1")
    assert acc.to_er7(separator="\n") == "MSH|^~\\&\nPID|1"
