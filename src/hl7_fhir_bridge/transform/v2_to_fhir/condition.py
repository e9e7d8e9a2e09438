# src/hl7_fhir_bridge/transform/v2_to_fhir/condition.py
"""
DG1 -> Condition (encounter diagnoses).
"""

from __future__ import annotations

from typing import Any, Dict

from fhir.resources.R4B.condition import Condition

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import (
    CONDITION_CATEGORY,
    CONDITION_CLINICAL,
    CONDITION_VER_STATUS,
    DIAGNOSIS_TYPE,
    ICD10,
    codeable,
    coding,
    lookup,
)
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    codeable_concept,
    fhir_datetime,
    fresh_id,
    make,
    require,
    scan_segments,
    value,
)


@register("condition")
class ConditionConverter:
    concept = "condition"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        def _build(dg1: SegmentHandle, index: int) -> Condition:
            return _build_condition(accessor, dg1, context)

        return scan_segments(accessor, "DG1", context, _build)


def _build_condition(
    accessor: FieldAccessor, dg1: SegmentHandle, context: ConversionContext
) -> Condition:
    require(accessor, dg1.path(3, 1), "DG1-3-1")

    category: Dict[str, Any] = {
        "coding": [
            coding(CONDITION_CATEGORY, "encounter-diagnosis", "Encounter Diagnosis")
        ]
    }
    dx_type = value(accessor, dg1, 6)
    if dx_type:
        category["text"] = lookup(DIAGNOSIS_TYPE, dx_type, dx_type)

    payload: Dict[str, Any] = {
        "resourceType": "Condition",
        "id": fresh_id(),
        "clinicalStatus": codeable(CONDITION_CLINICAL, "active", "Active"),
        "verificationStatus": codeable(CONDITION_VER_STATUS, "confirmed", "Confirmed"),
        "category": [category],
        "code": codeable_concept(accessor, dg1, 3, default_system=ICD10),
        "subject": context.patient_reference(),
        "encounter": context.encounter_reference(),
        "recordedDate": fhir_datetime(accessor, dg1, 5, context),
    }
    return make(Condition, payload)
