# src/hl7_fhir_bridge/transform/fhir_to_v2/allergy.py
"""AllergyIntolerance -> AL1."""

from __future__ import annotations

from typing import Optional

from ...accessor import FieldAccessor
from ...mappings import ALLERGY_CATEGORY_TO_V2, ALLERGY_SEVERITY_TO_V2, lookup
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    first,
    first_coding,
    hl7_dt,
    set_cwe,
    set_value,
)

_CRITICALITY_TO_V2 = {"high": "SV", "low": "MI"}


def allergy_severity(resource: Json) -> Optional[str]:
    """AL1-4 from the first reaction severity, else from criticality."""
    reaction = first(resource.get("reaction")) or {}
    severity = lookup(ALLERGY_SEVERITY_TO_V2, reaction.get("severity"))
    return severity or _CRITICALITY_TO_V2.get(resource.get("criticality") or "")


@register_resource_converter("AllergyIntolerance")
class AllergyToAl1(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        set_id = accessor.next_set_id("AL1")
        al1 = accessor.add_segment("AL1")
        set_value(accessor, al1, 1, set_id)

        category = first(resource.get("category"))
        set_value(accessor, al1, 2, lookup(ALLERGY_CATEGORY_TO_V2, category, "EA"), 1)
        set_cwe(accessor, al1, 3, resource.get("code"))
        set_value(accessor, al1, 4, allergy_severity(resource))

        rep = 0
        for reaction in resource.get("reaction") or []:
            for manifestation in reaction.get("manifestation") or []:
                coding = first_coding(manifestation)
                text = (
                    coding.get("display")
                    or manifestation.get("text")
                    or coding.get("code")
                )
                if text:
                    set_value(accessor, al1, 5, text, repetition=rep)
                    rep += 1

        onset = resource.get("onsetDateTime")
        onset = hl7_dt(state, "AllergyIntolerance", "onsetDateTime", onset)
        set_value(accessor, al1, 6, onset)
