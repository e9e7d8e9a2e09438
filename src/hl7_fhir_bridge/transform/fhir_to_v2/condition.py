# src/hl7_fhir_bridge/transform/fhir_to_v2/condition.py
"""Condition -> DG1."""

from __future__ import annotations

from ...accessor import FieldAccessor
from ...mappings import DIAGNOSIS_TYPE_TO_V2, lookup
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    first,
    first_coding,
    hl7_ts,
    set_cwe,
    set_value,
)


def diagnosis_type(resource: Json) -> str:
    """DG1-6 from the category text (Admitting / Working / Final); F otherwise."""
    for category in resource.get("category") or []:
        text = first_coding(category).get("display") or category.get("text") or ""
        code = lookup(DIAGNOSIS_TYPE_TO_V2, text.lower())
        if code:
            return code
    return "F"


@register_resource_converter("Condition")
class ConditionToDg1(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        set_id = accessor.next_set_id("DG1")
        dg1 = accessor.add_segment("DG1")
        set_value(accessor, dg1, 1, set_id)

        coding = first_coding(resource.get("code"))
        set_value(accessor, dg1, 2, "I10" if coding.get("code") else None)
        set_cwe(accessor, dg1, 3, resource.get("code"))
        description = coding.get("display") or (resource.get("code") or {}).get("text")
        set_value(accessor, dg1, 4, description)

        recorded = resource.get("recordedDate") or resource.get("onsetDateTime")
        recorded = hl7_ts(state, "Condition", "recordedDate", recorded)
        set_value(accessor, dg1, 5, recorded)
        set_value(accessor, dg1, 6, diagnosis_type(resource))

        note = first(resource.get("note"))
        if note and note.get("text") and not description:
            set_value(accessor, dg1, 4, note["text"])
