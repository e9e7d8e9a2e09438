# src/hl7_fhir_bridge/transform/fhir_to_v2/insurance.py
"""
Coverage -> IN1.

IN1-3 takes the payor Organization's identifier (or its id without the
``organization-`` prefix used on the way in); IN1-4 its name.
"""

from __future__ import annotations

from typing import Optional, Tuple

from ...accessor import FieldAccessor
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    concept_code,
    first,
    hl7_dt,
    reference_id,
    set_value,
)

# subscriber-relationship code -> IN1-17 (v2-0063)
_RELATIONSHIP_TO_V2 = {
    "self": "SEL",
    "spouse": "SPO",
    "child": "CHD",
    "parent": "PAR",
    "common": "DOM",
    "other": "OTH",
    "injured": "OTH",
}


def payor_fields(
    reference: Optional[Json], state: OutboundState
) -> Tuple[Optional[str], Optional[str]]:
    """(company id, company name) for IN1-3 / IN1-4."""
    if not reference:
        return None, None
    target = state.resolve(reference)
    if target is not None and target.get("resourceType") == "Organization":
        company_id = first(target.get("identifier") or [{}]).get("value")
        if not company_id:
            company_id = reference_id(reference)
        name = target.get("name") or reference.get("display")
    elif str(reference.get("reference") or "").startswith("Organization/"):
        company_id, name = reference_id(reference), reference.get("display")
    else:
        company_id, name = None, reference.get("display")
    if company_id and company_id.startswith("organization-"):
        company_id = company_id[len("organization-"):]
    return company_id, name


@register_resource_converter("Coverage")
class CoverageToIn1(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        set_id = accessor.next_set_id("IN1")
        in1 = accessor.add_segment("IN1")
        set_value(accessor, in1, 1, set_id)

        for cls in resource.get("class") or []:
            if concept_code(cls.get("type")) == "plan":
                set_value(accessor, in1, 2, cls.get("value"), 1)
                set_value(accessor, in1, 2, cls.get("name"), 2)
                break

        company_id, company_name = payor_fields(first(resource.get("payor")), state)
        set_value(accessor, in1, 3, company_id, 1)
        set_value(accessor, in1, 4, company_name, 1)

        period = resource.get("period") or {}
        start = hl7_dt(state, "Coverage", "period.start", period.get("start"))
        end = hl7_dt(state, "Coverage", "period.end", period.get("end"))
        set_value(accessor, in1, 12, start)
        set_value(accessor, in1, 13, end)

        relationship = resource.get("relationship") or {}
        code = concept_code(relationship)
        relation = _RELATIONSHIP_TO_V2.get(code or "") or relationship.get("text")
        set_value(accessor, in1, 17, relation, 1)
        set_value(accessor, in1, 36, resource.get("subscriberId"))
        set_value(accessor, in1, 47, concept_code(resource.get("type")))
