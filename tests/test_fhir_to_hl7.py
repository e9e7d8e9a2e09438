# tests/test_fhir_to_hl7.py
"""
Tests for hl7_fhir_bridge.fhir_to_hl7.

Covers input checks, message type detection, MSH construction from config,
segment order and per-resource failure containment.
"""

import pytest

from hl7_fhir_bridge.config import AppConfig
from hl7_fhir_bridge.exceptions import ConversionFailedError
from hl7_fhir_bridge.fhir_to_hl7 import convert_fhir_to_hl7, convert_fhir_to_hl7_result
from hl7_fhir_bridge.results import (
    CONVERSION_FAILED,
    INVALID_INPUT,
    NO_CONVERTER,
    PARSE_FAILURE,
    RESOURCE_CONVERSION_ERROR,
)

from conftest import make_bundle, segments_of

PATIENT = {
    "resourceType": "Patient",
    "id": "pat-1",
    "name": [{"family": "SMITH", "given": ["JOHN"]}],
    "gender": "male",
}

LAB_ORDER = {
    "resourceType": "ServiceRequest",
    "id": "sr-1",
    "status": "completed",
    "intent": "order",
    "identifier": [
        {"type": {"coding": [{"code": "PLAC"}]}, "value": "P1"},
        {"type": {"coding": [{"code": "FILL"}]}, "value": "F1"},
    ],
    "code": {"coding": [{"system": "http://loinc.org", "code": "24331-1"}]},
    "subject": {"reference": "Patient/pat-1"},
}

CHOLESTEROL = {
    "resourceType": "Observation",
    "id": "obs-1",
    "status": "final",
    "code": {"coding": [{"system": "http://loinc.org", "code": "2093-3"}]},
    "subject": {"reference": "Patient/pat-1"},
    "valueQuantity": {"value": 180, "unit": "mg/dL", "code": "mg/dL"},
    "referenceRange": [{"text": "<200"}],
}

REPORT = {
    "resourceType": "DiagnosticReport",
    "id": "dr-1",
    "status": "final",
    "code": {"coding": [{"system": "http://loinc.org", "code": "24331-1"}]},
    "subject": {"reference": "Patient/pat-1"},
    "basedOn": [{"reference": "ServiceRequest/sr-1"}],
    "result": [{"reference": "Observation/obs-1"}],
    "conclusion": "Within limits",
}


def _fields(segment):
    return segment.split("|")


# ------------------------------------------------------------------------------
# ADT
# ------------------------------------------------------------------------------


def test_patient_and_encounter_become_adt(smith_bundle):
    result = convert_fhir_to_hl7_result(smith_bundle)

    assert result.output is not None
    assert result.message_type == "ADT"
    assert result.transaction_id == "B1"
    assert result.success_count == 2

    er7 = result.output
    assert er7.startswith("MSH|^~\\&|")
    names = [s.split("|", 1)[0] for s in er7.split("\r") if s]
    assert names[:4] == ["MSH", "EVN", "PID", "PV1"]

    pid = _fields(segments_of(er7, "PID")[0])
    assert pid[5] == "SMITH^JOHN"
    assert pid[7] == "19800506"
    assert pid[8] == "M"

    pv1 = _fields(segments_of(er7, "PV1")[0])
    assert pv1[2] == "I"


def test_msh_fields_come_from_config(smith_bundle):
    cfg = AppConfig(
        sending_application="SENDER",
        sending_facility="FAC1",
        receiving_application="RECV",
        receiving_facility="FAC2",
        hl7_version="2.5.1",
        processing_id="T",
    )
    er7 = convert_fhir_to_hl7(smith_bundle, config=cfg)
    msh = _fields(segments_of(er7, "MSH")[0])
    assert msh[2:6] == ["SENDER", "FAC1", "RECV", "FAC2"]
    assert msh[8] == "ADT^A01^ADT_A01"
    assert msh[9] == "B1"
    assert msh[10] == "T"
    assert msh[11] == "2.5.1"


def test_default_config_sending_application(smith_bundle):
    er7 = convert_fhir_to_hl7(smith_bundle)
    msh = _fields(segments_of(er7, "MSH")[0])
    assert msh[2] == "HL7FHIRBridge"
    assert msh[4] == "LegacyApp"


def test_transaction_bundles_are_accepted():
    result = convert_fhir_to_hl7_result(make_bundle(PATIENT, bundle_type="transaction"))
    assert result.output is not None
    assert segments_of(result.output, "PID")


def test_parsed_dict_input_is_accepted():
    bundle = {
        "resourceType": "Bundle",
        "id": "B9",
        "type": "message",
        "entry": [{"resource": PATIENT}],
    }
    result = convert_fhir_to_hl7_result(bundle)
    assert result.transaction_id == "B9"
    assert segments_of(result.output, "PID")


# ------------------------------------------------------------------------------
# Unsupported resources and failures
# ------------------------------------------------------------------------------


def test_unknown_resource_type_is_a_warning_and_rest_converts():
    basic = {"resourceType": "Basic", "id": "b-1", "code": {"text": "misc"}}
    result = convert_fhir_to_hl7_result(make_bundle(PATIENT, basic))

    assert result.output is not None
    assert segments_of(result.output, "PID")
    codes = [w.error_code for w in result.warnings]
    assert NO_CONVERTER in codes
    no_conv = [w for w in result.warnings if w.error_code == NO_CONVERTER][0]
    assert no_conv.message == "No converter found for resource type: Basic"
    assert no_conv.segment_index == 1


def test_failed_resource_leaves_no_partial_segments():
    broken = {
        "resourceType": "MedicationRequest",
        "id": "mr-1",
        "status": "active",
        "intent": "order",
        "medicationCodeableConcept": {"text": "Amoxicillin"},
        "subject": {"reference": "Patient/pat-1"},
        "dosageInstruction": ["bad"],
    }
    bundle = make_bundle(PATIENT, broken, LAB_ORDER)
    result = convert_fhir_to_hl7_result(bundle, strict=False)

    assert result.output is not None
    assert result.fail_count == 1
    assert result.success_count == 2
    failed = [e for e in result.errors if e.error_code == RESOURCE_CONVERSION_ERROR]
    assert len(failed) == 1
    assert failed[0].segment == "MedicationRequest"
    assert failed[0].segment_index == 1

    assert segments_of(result.output, "PID")
    assert not segments_of(result.output, "RXE")
    orcs = segments_of(result.output, "ORC")
    assert len(orcs) == 1
    assert _fields(orcs[0])[2] == "P1"


def test_unexpected_header_error_becomes_failure_result(monkeypatch):
    def boom(bundle):
        raise RuntimeError("detector exploded")

    monkeypatch.setattr("hl7_fhir_bridge.fhir_to_hl7.detect_message_type", boom)
    result = convert_fhir_to_hl7_result(make_bundle(PATIENT))

    assert result.is_failure
    assert result.output is None
    assert result.errors[-1].error_code == CONVERSION_FAILED
    assert "detector exploded" in result.errors[-1].message
    assert result.errors[-1].exception_type == "RuntimeError"


@pytest.mark.parametrize(
    "text, message",
    [
        ("", "Input must not be empty"),
        ("   ", "Input must not be empty"),
        ('{"resourceType": "Patient", "id": "p"}', "Input must be a FHIR Bundle"),
        (
            '{"resourceType": "Bundle", "type": "collection"}',
            "Bundle.type must be 'message' or 'transaction'",
        ),
        (
            '{"resourceType": "Bundle", "type": "message", "entry": 5}',
            "Bundle.entry must be a list",
        ),
        (
            '{"resourceType": "Bundle", "type": "message", "entry": {"resource": {}}}',
            "Bundle.entry must be a list",
        ),
    ],
)
def test_invalid_input_is_reported(text, message):
    result = convert_fhir_to_hl7_result(text)
    assert result.is_failure
    assert result.output is None
    assert result.errors[0].error_code == INVALID_INPUT
    assert result.errors[0].message == message


def test_invalid_json_is_a_parse_failure():
    result = convert_fhir_to_hl7_result("{not json")
    assert result.is_failure
    assert result.errors[0].error_code == PARSE_FAILURE


def test_throwing_variant_raises_with_result_attached():
    with pytest.raises(
        ConversionFailedError, match=r"^Input must be a FHIR Bundle"
    ) as info:
        convert_fhir_to_hl7('{"resourceType": "Patient"}')
    assert info.value.result is not None
    assert info.value.result.is_failure


# ------------------------------------------------------------------------------
# ORU / ORM
# ------------------------------------------------------------------------------


def test_report_with_order_is_detected_as_oru():
    bundle = make_bundle(PATIENT, LAB_ORDER, CHOLESTEROL, REPORT)
    result = convert_fhir_to_hl7_result(bundle)
    assert result.message_type == "ORU"
    msh = _fields(segments_of(result.output, "MSH")[0])
    assert msh[8] == "ORU^R01^ORU_R01"


def test_report_results_are_written_under_the_obr():
    er7 = convert_fhir_to_hl7(make_bundle(PATIENT, CHOLESTEROL, REPORT))
    names = [s.split("|", 1)[0] for s in er7.split("\r") if s]

    obr_at = names.index("OBR")
    assert names[obr_at + 1] == "OBX"

    obx = [_fields(s) for s in segments_of(er7, "OBX")]
    # the observation once, under the report, then the conclusion
    assert len(obx) == 2
    assert obx[0][2] == "NM"
    assert obx[0][3].startswith("2093-3")
    assert obx[0][5] == "180"
    assert obx[0][7] == "<200"
    assert obx[1][2] == "TX"
    assert obx[1][5] == "Within limits"


def test_report_takes_order_numbers_from_based_on():
    er7 = convert_fhir_to_hl7(make_bundle(PATIENT, LAB_ORDER, CHOLESTEROL, REPORT))
    report_obr = [_fields(s) for s in segments_of(er7, "OBR")][-1]
    assert report_obr[2] == "P1"
    assert report_obr[3] == "F1"


def test_service_request_alone_is_orm():
    result = convert_fhir_to_hl7_result(make_bundle(PATIENT, LAB_ORDER))
    assert result.message_type == "ORM"
    orc = _fields(segments_of(result.output, "ORC")[0])
    assert orc[2] == "P1"
    assert orc[3] == "F1"


def test_care_plan_with_specimen_is_orm_with_spm_after_orc():
    care_plan = {
        "resourceType": "CarePlan",
        "id": "cp-1",
        "status": "active",
        "intent": "plan",
        "subject": {"reference": "Patient/pat-1"},
    }
    specimen = {
        "resourceType": "Specimen",
        "id": "sp-1",
        "identifier": [{"value": "SP100"}],
        "subject": {"reference": "Patient/pat-1"},
    }
    result = convert_fhir_to_hl7_result(make_bundle(PATIENT, care_plan, specimen))
    assert result.message_type == "ORM"
    names = [s.split("|")[0] for s in result.output.split("\r") if s]
    assert names.index("ORC") < names.index("SPM")
    assert _fields(segments_of(result.output, "SPM")[0])[2] == "SP100"


def test_message_header_event_wins_over_content():
    header = {
        "resourceType": "MessageHeader",
        "id": "mh-1",
        "eventCoding": {"code": "ADT^A08"},
        "source": {"endpoint": "http://example.org/src", "name": "UPSTREAM"},
    }
    bundle = make_bundle(header, PATIENT, CHOLESTEROL, REPORT)
    result = convert_fhir_to_hl7_result(bundle)
    assert result.message_type == "ADT"
    msh = _fields(segments_of(result.output, "MSH")[0])
    assert msh[2] == "UPSTREAM"
