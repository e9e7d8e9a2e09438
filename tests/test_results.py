# tests/test_results.py
"""
Tests for hl7_fhir_bridge.results and hl7_fhir_bridge.operation_outcome.
"""

import json

import pytest

from hl7_fhir_bridge.exceptions import TransformError
from hl7_fhir_bridge.fhir_parser import resource_to_json
from hl7_fhir_bridge.operation_outcome import (
    build_operation_outcome,
    operation_outcome_from_exception,
    operation_outcome_from_message,
)
from hl7_fhir_bridge.results import (
    CONVERSION_FAILED,
    FIELD_ERROR,
    INVALID_INPUT,
    NO_CONVERTER,
    SEGMENT_ERROR,
    ConversionError,
    ConversionResult,
    Severity,
)


def _dump(outcome):
    return json.loads(resource_to_json(outcome))


# ------------------------------------------------------------------------------
# ConversionError
# ------------------------------------------------------------------------------


def test_segment_error_location_and_str():
    err = ConversionError.segment_error("AL1", 2, "AL1-3 is required", field="AL1-3-1")
    assert err.severity is Severity.ERROR
    assert err.error_code == SEGMENT_ERROR
    assert err.location == "Segment: AL1[2], Field: AL1-3-1"
    assert str(err) == "ERROR SEGMENT_ERROR (Segment: AL1[2], Field: AL1-3-1): AL1-3 is required"


def test_location_leaves_out_unknown_parts():
    assert ConversionError.warning("x", segment="PID").location == "Segment: PID"
    assert ConversionError.warning("x", field="PID-7").location == "Field: PID-7"
    assert ConversionError.warning("x").location is None
    assert str(ConversionError.warning("x")) == "WARNING WARNING: x"


def test_field_error_defaults_to_warning():
    err = ConversionError.field_error("PID", 0, "PID-7", "bad date")
    assert err.severity is Severity.WARNING
    assert err.error_code == FIELD_ERROR


def test_from_exception_prefers_exception_locality():
    exc = TransformError("missing code", segment="AL1", index=0, field="AL1-3-1")
    err = ConversionError.from_exception(exc, segment="XXX", index=5)
    assert (err.segment, err.segment_index, err.field) == ("AL1", 0, "AL1-3-1")
    assert err.exception_type == "TransformError"
    assert err.error_code == CONVERSION_FAILED


def test_from_exception_falls_back_to_arguments():
    err = ConversionError.from_exception(RuntimeError(), segment="OBX", index=3)
    assert err.message == "RuntimeError"
    assert (err.segment, err.segment_index) == ("OBX", 3)


def test_to_dict_uses_camel_case():
    err = ConversionError.segment_error("OBX", 1, "boom", exc=KeyError("k"))
    assert err.to_dict() == {
        "segment": "OBX",
        "segmentIndex": 1,
        "field": None,
        "errorCode": SEGMENT_ERROR,
        "message": "boom",
        "severity": "ERROR",
        "exceptionType": "KeyError",
    }


def test_conversion_error_is_immutable():
    err = ConversionError.warning("x")
    with pytest.raises(AttributeError):
        err.message = "y"


# ------------------------------------------------------------------------------
# ConversionResult
# ------------------------------------------------------------------------------


def test_full_success_ignores_warnings():
    res = ConversionResult(output="{}", warnings=[ConversionError.warning("w")])
    assert res.is_full_success
    assert not res.is_partial_success
    assert not res.has_errors
    assert res.status == "success"
    assert res.total_issues == 1


def test_partial_success():
    res = ConversionResult(
        output="{}", errors=[ConversionError.segment_error("AL1", 2, "x")]
    )
    assert res.is_partial_success
    assert res.status == "partial"


def test_failure_factory():
    exc = ValueError("nope")
    res = ConversionResult.failure("Input must not be empty", INVALID_INPUT, exc=exc)
    assert res.is_failure
    assert res.status == "failed"
    assert res.fail_count == 1
    assert res.errors[0].error_code == INVALID_INPUT
    assert res.errors[0].exception_type == "ValueError"


def test_summary_keys():
    res = ConversionResult(
        output="{}",
        errors=[
            ConversionError.segment_error("AL1", 2, "x"),
            ConversionError.segment_error("OBX", 0, "y", code=NO_CONVERTER),
        ],
        success_count=3,
        fail_count=2,
        message_type="ADT^A01",
        transaction_id="T1",
    )
    assert res.summary() == {
        "transactionId": "T1",
        "messageType": "ADT^A01",
        "status": "partial",
        "successCount": 3,
        "failCount": 2,
        "errorCount": 2,
        "warningCount": 0,
        "errorCodes": [NO_CONVERTER, SEGMENT_ERROR],
    }


# ------------------------------------------------------------------------------
# OperationOutcome
# ------------------------------------------------------------------------------


def test_outcome_lists_errors_before_warnings():
    outcome = _dump(
        build_operation_outcome(
            [ConversionError.segment_error("AL1", 2, "bad allergy", field="AL1-3-1")],
            [ConversionError.field_error("PID", 0, "PID-7", "bad date")],
        )
    )
    issues = outcome["issue"]
    assert [i["severity"] for i in issues] == ["error", "warning"]
    assert issues[0]["code"] == "structure"
    assert issues[0]["diagnostics"] == "bad allergy"
    assert issues[0]["details"]["text"] == SEGMENT_ERROR
    assert issues[0]["location"] == ["Segment: AL1[2], Field: AL1-3-1"]
    assert issues[1]["code"] == "value"


def test_outcome_for_clean_conversion_is_informational():
    outcome = _dump(ConversionResult(output="{}").to_operation_outcome())
    assert len(outcome["issue"]) == 1
    issue = outcome["issue"][0]
    assert issue["severity"] == "information"
    assert issue["code"] == "informational"
    assert issue["diagnostics"] == "Conversion completed successfully"


def test_unknown_code_maps_to_processing():
    outcome = _dump(build_operation_outcome([ConversionError("CUSTOM", "odd")]))
    assert outcome["issue"][0]["code"] == "processing"
    assert "location" not in outcome["issue"][0]


def test_outcome_from_message():
    outcome = _dump(operation_outcome_from_message("queue full", severity="warning"))
    assert outcome["issue"][0]["severity"] == "warning"
    assert outcome["issue"][0]["diagnostics"] == "queue full"


def test_outcome_from_exception():
    outcome = _dump(operation_outcome_from_exception(KeyError("PID"), segment="PID"))
    issue = outcome["issue"][0]
    assert issue["code"] == "exception"
    assert issue["details"]["text"] == "KeyError"
    assert issue["location"] == ["HL7 Segment: PID"]
