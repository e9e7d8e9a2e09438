# tests/test_datetime_utils.py
"""
Tests for hl7_fhir_bridge.datetime_utils.
"""

import re
from datetime import date, datetime, timedelta, timezone

import pytest

from hl7_fhir_bridge.datetime_utils import (
    fhir_to_hl7_date,
    fhir_to_hl7_datetime,
    hl7_now,
    hl7_to_fhir_date,
    hl7_to_fhir_datetime,
    hl7_to_fhir_instant,
    parse_hl7_datetime,
)

# ------------------------------------------------------------------------------
# HL7 -> FHIR
# ------------------------------------------------------------------------------


def test_parse_hl7_datetime_defaults_to_utc():
    dt = parse_hl7_datetime("199904140038")
    assert dt == datetime(1999, 4, 14, 0, 38, tzinfo=timezone.utc)


def test_parse_hl7_datetime_with_offset_and_fraction():
    dt = parse_hl7_datetime("20240301070000.25-0500")
    assert dt.microsecond == 250000
    assert dt.utcoffset() == timedelta(hours=-5)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1970", "1970"),
        ("197001", "1970-01"),
        ("19700101", "1970-01-01"),
        ("19700101123000", "1970-01-01"),
    ],
)
def test_hl7_to_fhir_date_keeps_precision(value, expected):
    assert hl7_to_fhir_date(value) == expected


def test_hl7_to_fhir_datetime_date_only_stays_a_date():
    assert hl7_to_fhir_datetime("20240101") == "2024-01-01"


def test_hl7_to_fhir_datetime_adds_utc_offset():
    assert hl7_to_fhir_datetime("20240101120000") == "2024-01-01T12:00:00+00:00"


def test_hl7_to_fhir_datetime_keeps_given_offset():
    assert hl7_to_fhir_datetime("202401011200+0130") == "2024-01-01T12:00:00+01:30"


def test_hl7_to_fhir_instant_is_always_full():
    assert hl7_to_fhir_instant("20240101") == "2024-01-01T00:00:00+00:00"


@pytest.mark.parametrize(
    "value", ["", "abc", "2024-01-01", "20241301", "20240230", "2024010"]
)
def test_invalid_hl7_values_raise_value_error(value):
    with pytest.raises(ValueError):
        hl7_to_fhir_datetime(value)


def test_non_string_raises_type_error():
    with pytest.raises(TypeError, match=r"^value must be str"):
        parse_hl7_datetime(20240101)


def test_bad_offset_raises():
    with pytest.raises(ValueError, match=r"^invalid HL7 time zone offset"):
        parse_hl7_datetime("202401011200+2500")


# ------------------------------------------------------------------------------
# FHIR -> HL7
# ------------------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1980", "1980"),
        ("1980-05", "198005"),
        ("1980-05-06", "19800506"),
        ("2024-03-01T07:00:00Z", "20240301070000+0000"),
        ("2024-03-01T07:00:00-05:00", "20240301070000-0500"),
        ("2024-03-01T07:00:00", "20240301070000+0000"),
    ],
)
def test_fhir_to_hl7_datetime(value, expected):
    assert fhir_to_hl7_datetime(value) == expected


def test_fhir_to_hl7_datetime_accepts_python_objects():
    assert fhir_to_hl7_datetime(date(2024, 3, 1)) == "20240301"
    aware = datetime(2024, 3, 1, 7, 0, tzinfo=timezone.utc)
    assert fhir_to_hl7_datetime(aware) == "20240301070000+0000"


def test_fhir_to_hl7_date_truncates_time():
    assert fhir_to_hl7_date("2024-03-01T07:00:00Z") == "20240301"
    assert fhir_to_hl7_date("1980-05") == "198005"


@pytest.mark.parametrize("value", ["", "   ", "yesterday", "2024-13-45T00:00:00"])
def test_fhir_to_hl7_rejects_bad_text(value):
    with pytest.raises(ValueError):
        fhir_to_hl7_datetime(value)


def test_fhir_to_hl7_rejects_non_string():
    with pytest.raises(TypeError):
        fhir_to_hl7_datetime(42)


def test_hl7_now_shape():
    assert re.match(r"^\d{14}\+0000$", hl7_now())
