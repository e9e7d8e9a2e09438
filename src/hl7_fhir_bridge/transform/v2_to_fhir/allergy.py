# src/hl7_fhir_bridge/transform/v2_to_fhir/allergy.py
"""
AL1 -> AllergyIntolerance.

Notes
-----
- AL1-2 allergen type maps to category (DA/MA medication, FA food,
  EA/AA/LA/PA environment); unknown types leave category unset.
- AL1-4 severity: SV -> criticality high / reaction severe, MO and MI ->
  criticality low with moderate / mild reactions, anything else -> low.
- An AL1 without AL1-3-1 is malformed and ends the scan.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fhir.resources.R4B.allergyintolerance import AllergyIntolerance

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import (
    ALLERGY_CATEGORY,
    ALLERGY_CLINICAL,
    ALLERGY_SEVERITY,
    ALLERGY_VERIFICATION,
    V2_0127,
    codeable,
    lookup,
)
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    codeable_concept,
    fhir_datetime,
    fresh_id,
    make,
    repetitions,
    require,
    scan_segments,
    value,
)


@register("allergy")
class AllergyConverter:
    """AL1 -> AllergyIntolerance, one per AL1 occurrence."""

    concept = "allergy"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        def _build(al1: SegmentHandle, index: int) -> AllergyIntolerance:
            return _build_allergy(accessor, al1, context)

        return scan_segments(accessor, "AL1", context, _build)


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _severity(code: Optional[str]) -> Dict[str, Optional[str]]:
    prefix = (code or "").strip().upper()[:2]
    reaction = lookup(ALLERGY_SEVERITY, prefix)
    return {
        "criticality": "high" if prefix == "SV" else "low",
        "reaction": reaction,
    }


def _manifestations(
    accessor: FieldAccessor, al1: SegmentHandle
) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for rep in repetitions(accessor, al1, 5):
        code = value(accessor, al1, 5, 1, repetition=rep)
        display = value(accessor, al1, 5, 2, repetition=rep)
        concept = codeable(V2_0127, code, display)
        if concept:
            out.append(concept)
    return out


def _build_allergy(
    accessor: FieldAccessor, al1: SegmentHandle, context: ConversionContext
) -> AllergyIntolerance:
    require(accessor, al1.path(3, 1), "AL1-3-1")

    category = lookup(ALLERGY_CATEGORY, value(accessor, al1, 2))
    severity = _severity(value(accessor, al1, 4))
    payload: Dict[str, Any] = {
        "resourceType": "AllergyIntolerance",
        "id": fresh_id(),
        "clinicalStatus": codeable(ALLERGY_CLINICAL, "active", "Active"),
        "verificationStatus": codeable(ALLERGY_VERIFICATION, "confirmed", "Confirmed"),
        "category": [category] if category else None,
        "criticality": severity["criticality"],
        "code": codeable_concept(accessor, al1, 3),
        "patient": context.patient_reference(),
        "encounter": context.encounter_reference(),
        "onsetDateTime": fhir_datetime(accessor, al1, 6, context),
    }

    manifestations = _manifestations(accessor, al1)
    if manifestations:
        reaction: Dict[str, Any] = {"manifestation": manifestations}
        if severity["reaction"]:
            reaction["severity"] = severity["reaction"]
        payload["reaction"] = [reaction]
    return make(AllergyIntolerance, payload)
