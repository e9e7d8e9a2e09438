# src/hl7_fhir_bridge/transform/fhir_to_v2/related_person.py
"""
RelatedPerson -> GT1 (guarantors) or NK1 (everyone else).

A RelatedPerson is a guarantor when any relationship coding carries a
guarantor-like code (GUAR, GT, SEL, EMC).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ...accessor import FieldAccessor
from ...mappings import GUARANTOR_CODES
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    first,
    first_identifier,
    hl7_dt,
    set_value,
    set_xad,
    set_xpn,
    set_xtn,
)
from .patient import write_nk1


def is_guarantor(resource: Json) -> bool:
    for rel in resource.get("relationship") or []:
        for coding in rel.get("coding") or []:
            if coding.get("code") in GUARANTOR_CODES:
                return True
    return False


def _v2_relationship(resource: Json) -> Optional[Dict[str, Any]]:
    """First relationship coding that is not the GUAR role marker."""
    for rel in resource.get("relationship") or []:
        for coding in rel.get("coding") or []:
            if coding.get("code") and coding.get("code") != "GUAR":
                return coding
    return None


@register_resource_converter("RelatedPerson")
class RelatedPersonToGt1(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        if not is_guarantor(resource):
            write_nk1(
                accessor,
                {
                    "name": first(resource.get("name")),
                    "relationship": resource.get("relationship"),
                    "address": first(resource.get("address")),
                    "telecom": resource.get("telecom"),
                },
            )
            return

        set_id = accessor.next_set_id("GT1")
        gt1 = accessor.add_segment("GT1")
        set_value(accessor, gt1, 1, set_id)
        set_value(accessor, gt1, 2, first_identifier(resource))
        set_xpn(accessor, gt1, 3, first(resource.get("name")))
        set_xad(accessor, gt1, 5, first(resource.get("address")))
        phones: List[Json] = resource.get("telecom") or []
        for rep, point in enumerate(phones):
            set_xtn(accessor, gt1, 6, point, rep)
        birth = hl7_dt(state, "RelatedPerson", "birthDate", resource.get("birthDate"))
        set_value(accessor, gt1, 8, birth)

        coding = _v2_relationship(resource)
        if coding:
            set_value(accessor, gt1, 11, coding.get("code"), 1)
            set_value(accessor, gt1, 11, coding.get("display"), 2)
