# tests/test_fhir_parser.py
"""
Tests for hl7_fhir_bridge/fhir_parser.
"""

import json

import pytest
from fhir.resources.R4B.bundle import Bundle
from fhir.resources.R4B.patient import Patient
from fhir.resources.R4B.resource import Resource
from lxml import etree

from hl7_fhir_bridge.exceptions import ParseError
from hl7_fhir_bridge.fhir_parser import (
    KNOWN_TYPES,
    _ensure_resource_type_attr,
    _xml_to_obj,
    build_resource,
    load_fhir_json,
    load_fhir_xml,
    parse_fhir_json,
    resource_to_json,
    resource_type_of,
)

# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _write(tmp_path, name, text):
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


# ------------------------------------------------------------------------------
# _xml_to_obj
# ------------------------------------------------------------------------------


def test_xml_to_obj_promotes_to_list():
    xml = "<root><child value='a'/><child value='b'/><child value='c'/></root>"
    out = _xml_to_obj(etree.fromstring(xml))
    assert out["child"] == ["a", "b", "c"]


def test_xml_to_obj_first_repeat_promotes_scalar_to_list():
    xml = "<root><child><grand value='x'/></child><child value='y'/></root>"
    out = _xml_to_obj(etree.fromstring(xml))
    # First child is a dict, second makes it a list
    assert out["child"] == [{"grand": "x"}, "y"]


def test_xml_to_obj_known_array_elements_are_lists():
    xml = "<root><identifier><value value='1'/></identifier><gender value='male'/></root>"
    out = _xml_to_obj(etree.fromstring(xml))
    assert out["identifier"] == [{"value": "1"}]
    assert out["gender"] == "male"


def test_xml_to_obj_keeps_extension_url():
    xml = "<root><extension url='http://x'><valueString value='v'/></extension></root>"
    out = _xml_to_obj(etree.fromstring(xml))
    assert out["extension"] == [{"url": "http://x", "valueString": "v"}]


# ------------------------------------------------------------------------------
# _ensure_resource_type_attr / resource_type_of
# ------------------------------------------------------------------------------


def test_ensure_resource_type_attr_no_expected_does_nothing():
    res = Resource.model_construct()
    before = getattr(res, "resource_type", None)
    _ensure_resource_type_attr(res, None)
    assert getattr(res, "resource_type", None) == before


def test_resource_type_of_models_and_mappings():
    assert resource_type_of({"resourceType": "Patient"}) == "Patient"
    assert resource_type_of({}) is None
    assert resource_type_of(Patient(id="p1")) == "Patient"


# ------------------------------------------------------------------------------
# parse_fhir_json / build_resource / resource_to_json
# ------------------------------------------------------------------------------


def test_parse_fhir_json():
    assert parse_fhir_json('{"resourceType": "Patient"}') == {"resourceType": "Patient"}
    with pytest.raises(ParseError, match=r"^invalid JSON"):
        parse_fhir_json("{nope")
    with pytest.raises(ParseError, match=r"^FHIR JSON must be an object"):
        parse_fhir_json("[1, 2]")
    with pytest.raises(TypeError, match=r"^text must be str"):
        parse_fhir_json(b"{}")


def test_known_types_cover_bundle_content():
    for rtype in ("Bundle", "Patient", "DocumentReference", "Coverage", "Provenance"):
        assert rtype in KNOWN_TYPES


def test_build_resource_known_type():
    res = build_resource({"resourceType": "Bundle", "id": "b1", "type": "message"})
    assert isinstance(res, Bundle)
    assert res.id == "b1"


def test_build_resource_validation_error():
    with pytest.raises(ParseError, match=r"^FHIR Patient validation error"):
        build_resource({"resourceType": "Patient", "gender": 42, "bogus": True})


def test_build_resource_unknown_type_keeps_name():
    res = build_resource({"resourceType": "Basic2", "id": "x1"})
    assert isinstance(res, Resource)
    assert res.id == "x1"
    assert resource_type_of(res) == "Basic2"


def test_resource_to_json():
    doc = json.loads(resource_to_json(Patient(id="p1")))
    assert doc["resourceType"] == "Patient"
    assert doc["id"] == "p1"
    assert resource_to_json({"a": 1}) == '{"a": 1}'
    assert "\n" in resource_to_json({"a": 1}, pretty=True)
    with pytest.raises(ParseError, match=r"^cannot serialize"):
        resource_to_json(object())


# ------------------------------------------------------------------------------
# load_fhir_json
# ------------------------------------------------------------------------------


def test_load_fhir_json_raises_on_missing_file(tmp_path):
    with pytest.raises(ParseError, match=r"^file does not exist"):
        load_fhir_json(tmp_path / "missing.json")


def test_load_fhir_json_raises_on_directory_and_type_check(tmp_path):
    with pytest.raises(ParseError, match=r"^not a file"):
        load_fhir_json(tmp_path)
    with pytest.raises(ParseError, match=r"^path must be pathlib\.Path"):
        load_fhir_json("not-a-path")


def test_load_fhir_json_raises_on_invalid_json(tmp_path):
    p = _write(tmp_path, "bad.json", "{not json")
    with pytest.raises(ParseError, match=r"^invalid JSON"):
        load_fhir_json(p)


def test_load_fhir_json_patient_returns_patient(tmp_path):
    p = _write(tmp_path, "p.json", json.dumps({"resourceType": "Patient", "id": "p1"}))
    res = load_fhir_json(p)
    assert isinstance(res, Patient)
    assert res.id == "p1"


def test_load_fhir_json_oserror(tmp_path, monkeypatch):
    p = _write(tmp_path, "p.json", "{}")

    def _boom(*a, **k):
        raise OSError("denied")

    monkeypatch.setattr(type(p), "read_text", _boom)
    with pytest.raises(ParseError, match=r"^failed to read JSON"):
        load_fhir_json(p)


# ------------------------------------------------------------------------------
# load_fhir_xml
# ------------------------------------------------------------------------------


def test_load_fhir_xml_raises_on_missing_file(tmp_path):
    with pytest.raises(ParseError, match=r"^file does not exist"):
        load_fhir_xml(tmp_path / "missing.xml")


def test_load_fhir_xml_raises_on_invalid_xml(tmp_path):
    p = _write(tmp_path, "bad.xml", "<Patient><id value='x'></Patient")
    with pytest.raises(ParseError, match=r"^invalid XML"):
        load_fhir_xml(p)


def test_load_fhir_xml_patient_parses(tmp_path):
    xml = (
        '<Patient xmlns="http://hl7.org/fhir">'
        '<id value="p1"/>'
        "<name><family value='Doe'/><given value='Jane'/><given value='Q'/></name>"
        '<gender value="female"/>'
        "</Patient>"
    )
    res = load_fhir_xml(_write(tmp_path, "patient.xml", xml))
    assert isinstance(res, Patient)
    assert res.id == "p1"
    assert res.gender == "female"
    assert res.name[0].family == "Doe"
    assert res.name[0].given == ["Jane", "Q"]


def test_load_fhir_xml_single_given_becomes_list(tmp_path):
    xml = (
        '<Patient xmlns="http://hl7.org/fhir">'
        "<name><given value='Jane'/></name>"
        "</Patient>"
    )
    res = load_fhir_xml(_write(tmp_path, "patient.xml", xml))
    assert res.name[0].given == ["Jane"]


def test_load_fhir_xml_known_type_validation_error(tmp_path):
    xml = '<Patient xmlns="http://hl7.org/fhir"><birthDate value="not-a-date"/></Patient>'
    with pytest.raises(ParseError, match=r"^FHIR Patient validation error"):
        load_fhir_xml(_write(tmp_path, "patient.xml", xml))


def test_load_fhir_xml_bundle(tmp_path):
    xml = (
        '<Bundle xmlns="http://hl7.org/fhir">'
        '<id value="b1"/><type value="message"/>'
        "<entry><resource><Patient><id value='p1'/></Patient></resource></entry>"
        "</Bundle>"
    )
    res = load_fhir_xml(_write(tmp_path, "bundle.xml", xml))
    assert isinstance(res, Bundle)
    assert res.type == "message"
