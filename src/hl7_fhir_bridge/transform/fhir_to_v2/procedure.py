# src/hl7_fhir_bridge/transform/fhir_to_v2/procedure.py
"""Procedure -> PR1."""

from __future__ import annotations

from ...accessor import FieldAccessor
from ...mappings import v2_system_for
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    concept_code,
    first_coding,
    hl7_ts,
    set_cwe,
    set_value,
    set_xcn,
)

# performer.function code -> PR1-11 surgeon / PR1-12 anesthesiologist
_FUNCTION_FIELDS = {"PPRF": 11, "SPRF": 12}


@register_resource_converter("Procedure")
class ProcedureToPr1(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        set_id = accessor.next_set_id("PR1")
        pr1 = accessor.add_segment("PR1")
        set_value(accessor, pr1, 1, set_id)

        coding = first_coding(resource.get("code"))
        set_value(accessor, pr1, 2, v2_system_for(coding.get("system")))
        set_cwe(accessor, pr1, 3, resource.get("code"))
        description = coding.get("display") or (resource.get("code") or {}).get("text")
        set_value(accessor, pr1, 4, description)

        performed = resource.get("performedDateTime") or (
            resource.get("performedPeriod") or {}
        ).get("start")
        set_value(accessor, pr1, 5, hl7_ts(state, "Procedure", "performed", performed))

        reps = {11: 0, 12: 0}
        for performer in resource.get("performer") or []:
            function = concept_code(performer.get("function")) or ""
            field_no = _FUNCTION_FIELDS.get(function, 11)
            actor = performer.get("actor")
            if set_xcn(accessor, pr1, field_no, actor, state, reps[field_no]):
                reps[field_no] += 1
