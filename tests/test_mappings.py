# tests/test_mappings.py
"""
Tests for hl7_fhir_bridge.mappings helpers.
"""

import pytest

from hl7_fhir_bridge.mappings import (
    GENDER_V2_TO_FHIR,
    LOINC,
    RXNORM,
    codeable,
    coding,
    lookup,
    system_for,
    v2_system_for,
)


def test_lookup_exact_then_upper_case():
    assert lookup(GENDER_V2_TO_FHIR, "M") == "male"
    assert lookup(GENDER_V2_TO_FHIR, " f ") == "female"
    assert lookup(GENDER_V2_TO_FHIR, "Z") is None
    assert lookup(GENDER_V2_TO_FHIR, "Z", "unknown") == "unknown"
    assert lookup(GENDER_V2_TO_FHIR, None, "unknown") == "unknown"


def test_lookup_tables_are_read_only():
    with pytest.raises(TypeError):
        GENDER_V2_TO_FHIR["X"] = "x"


@pytest.mark.parametrize(
    "v2, url",
    [("LN", LOINC), ("ln", LOINC), ("RXNORM", RXNORM), ("XYZ", None), (None, None)],
)
def test_system_for(v2, url):
    assert system_for(v2) == url


def test_system_for_default():
    assert system_for("XYZ", "urn:oid:1.2") == "urn:oid:1.2"


@pytest.mark.parametrize(
    "url, v2",
    [
        (LOINC, "LN"),
        ("http://hl7.org/fhir/sid/cvx", "CVX"),
        ("urn:oid:2.16.840.1.113883.19.5", "2.16.840.1.113883.19.5"),
        ("http://example.org/local", None),
        ("", None),
    ],
)
def test_v2_system_for(url, v2):
    assert v2_system_for(url) == v2


def test_coding_leaves_out_empty_parts():
    assert coding(LOINC, "2093-3") == {"system": LOINC, "code": "2093-3"}
    assert coding(None, "X", "Ex") == {"code": "X", "display": "Ex"}


def test_codeable():
    assert codeable(LOINC, "2093-3", "Cholesterol") == {
        "coding": [{"system": LOINC, "code": "2093-3", "display": "Cholesterol"}]
    }
    # free text with no code is preserved as text
    assert codeable(None, None, "Peanut") == {"text": "Peanut"}
    assert codeable(None, None) is None
