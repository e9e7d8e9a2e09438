# tests/test_batch.py
"""
Tests for hl7_fhir_bridge.batch.
"""

import pytest

from hl7_fhir_bridge import batch
from hl7_fhir_bridge.batch import FHIR_TO_HL7, HL7_TO_FHIR, BatchResult, convert_batch
from hl7_fhir_bridge.config import AppConfig
from hl7_fhir_bridge.results import CONVERSION_FAILED, INVALID_INPUT, PARSE_FAILURE

from conftest import ADT_A01_MINIMAL, ALLERGY_THIRD_BAD, ORU_R01, make_bundle


def test_results_keep_input_order():
    messages = [
        ADT_A01_MINIMAL,
        ORU_R01,
        ADT_A01_MINIMAL.replace("|1001|", "|1002|"),
    ]
    out = convert_batch(messages, max_workers=3)

    assert isinstance(out, BatchResult)
    assert out.total == 3
    assert [r.transaction_id for r in out.results] == ["1001", "ORU0001", "1002"]


def test_one_bad_message_does_not_affect_others():
    messages = [ADT_A01_MINIMAL, "NOT|HL7", "", ALLERGY_THIRD_BAD]
    out = convert_batch(messages)

    assert out.results[0].is_full_success
    assert out.results[1].errors[0].error_code == PARSE_FAILURE
    assert out.results[2].errors[0].error_code == INVALID_INPUT
    assert out.results[3].is_partial_success
    assert out.summary() == {"total": 4, "succeeded": 1, "partial": 1, "failed": 2}


def test_unexpected_exception_becomes_conversion_failed(monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(batch, "convert_hl7_to_fhir_result", boom)
    out = convert_batch([ADT_A01_MINIMAL, ADT_A01_MINIMAL])

    assert out.failed == 2
    err = out.results[0].errors[0]
    assert err.error_code == CONVERSION_FAILED
    assert "kaboom" in err.message
    assert "MSH|" in err.message


def test_fhir_direction():
    patient = {"resourceType": "Patient", "id": "p1", "name": [{"family": "ROE"}]}
    out = convert_batch(
        [make_bundle(patient), '{"resourceType": "Patient"}'], direction=FHIR_TO_HL7
    )
    assert out.results[0].output.startswith("MSH|")
    assert out.results[1].errors[0].error_code == INVALID_INPUT
    assert out.succeeded + out.partial == 1
    assert out.failed == 1


def test_tenant_defaults_to_config():
    cfg = AppConfig(tenant_id="acme", batch_workers=2)
    out = convert_batch([ADT_A01_MINIMAL], direction=HL7_TO_FHIR, config=cfg)
    assert '"acme"' in out.results[0].output


def test_empty_batch():
    out = convert_batch([])
    assert out.total == 0
    assert out.summary() == {"total": 0, "succeeded": 0, "partial": 0, "failed": 0}


def test_invalid_direction_raises():
    with pytest.raises(ValueError, match=r"^direction must be one of"):
        convert_batch([ADT_A01_MINIMAL], direction="sideways")
