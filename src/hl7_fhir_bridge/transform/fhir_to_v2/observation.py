# src/hl7_fhir_bridge/transform/fhir_to_v2/observation.py
"""
Observation -> OBX (+ NTE for notes in order/result messages).

Observations listed in a DiagnosticReport's ``result`` are skipped here; the
report converter writes them under their OBR.
"""

from __future__ import annotations

from typing import Optional

from ...accessor import FieldAccessor, SegmentHandle
from ...mappings import NOTE_LOINC, OBSERVATION_STATUS_TO_V2, lookup
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    concept_code,
    first,
    hl7_ts,
    number_text,
    set_cwe,
    set_value,
    set_xcn,
)

# message types whose structures allow NTE after OBX
_NOTE_TYPES = ("ORU", "ORM")


def _reference_range(ranges) -> Optional[str]:
    rng = first(ranges)
    if not rng:
        return None
    if rng.get("text"):
        return rng["text"]
    low = number_text((rng.get("low") or {}).get("value"))
    high = number_text((rng.get("high") or {}).get("value"))
    if low and high:
        return f"{low}-{high}"
    if low:
        return f">{low}"
    if high:
        return f"<{high}"
    return None


def _write_value(
    accessor: FieldAccessor, obx: SegmentHandle, resource: Json, state: OutboundState
) -> None:
    """OBX-2 value type and OBX-5/6 value and units."""
    if "valueQuantity" in resource:
        qty = resource["valueQuantity"] or {}
        set_value(accessor, obx, 2, "NM")
        set_value(accessor, obx, 5, number_text(qty.get("value")))
        set_value(accessor, obx, 6, qty.get("code") or qty.get("unit"), 1)
        if qty.get("unit") and qty.get("code") and qty["unit"] != qty["code"]:
            set_value(accessor, obx, 6, qty["unit"], 2)
        if qty.get("code"):
            set_value(accessor, obx, 6, "UCUM", 3)
    elif "valueCodeableConcept" in resource:
        set_value(accessor, obx, 2, "CE")
        set_cwe(accessor, obx, 5, resource["valueCodeableConcept"])
    elif "valueInteger" in resource:
        set_value(accessor, obx, 2, "NM")
        set_value(accessor, obx, 5, resource["valueInteger"])
    elif "valueDateTime" in resource:
        set_value(accessor, obx, 2, "TS")
        set_value(
            accessor,
            obx,
            5,
            hl7_ts(state, "Observation", "valueDateTime", resource["valueDateTime"]),
        )
    elif "valueBoolean" in resource:
        set_value(accessor, obx, 2, "ST")
        set_value(accessor, obx, 5, "Y" if resource["valueBoolean"] else "N")
    elif "valueString" in resource:
        is_note = concept_code(resource.get("code")) == NOTE_LOINC
        set_value(accessor, obx, 2, "TX" if is_note else "ST")
        set_value(accessor, obx, 5, resource["valueString"])


def write_obx(
    accessor: FieldAccessor, resource: Json, state: OutboundState, set_id: int
) -> SegmentHandle:
    """
    Write one Observation as an OBX segment and return its handle.

    Parameters
    ----------
    accessor : FieldAccessor
    resource : Mapping
        Observation JSON.
    state : OutboundState
    set_id : int
        OBX-1 value.
    """
    obx = accessor.add_segment("OBX")
    set_value(accessor, obx, 1, set_id)
    _write_value(accessor, obx, resource, state)
    set_cwe(accessor, obx, 3, resource.get("code"))
    set_value(accessor, obx, 7, _reference_range(resource.get("referenceRange")))
    set_value(accessor, obx, 8, concept_code(first(resource.get("interpretation"))))
    status = lookup(OBSERVATION_STATUS_TO_V2, resource.get("status"), "F")
    set_value(accessor, obx, 11, status)

    period = resource.get("effectivePeriod") or {}
    effective = resource.get("effectiveDateTime") or period.get("start")
    set_value(accessor, obx, 14, hl7_ts(state, "Observation", "effective", effective))
    for performer in resource.get("performer") or []:
        ref = str(performer.get("reference", ""))
        if ref.startswith("Practitioner/") or performer.get("display"):
            set_xcn(accessor, obx, 16, performer, state)
            break

    if state.message_type in _NOTE_TYPES:
        for note in resource.get("note") or []:
            if note.get("text"):
                nte_id = accessor.next_set_id("NTE")
                nte = accessor.add_segment("NTE")
                set_value(accessor, nte, 1, nte_id)
                set_value(accessor, nte, 3, note["text"])
    return obx


@register_resource_converter("Observation")
class ObservationToObx(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        ref = f"Observation/{resource.get('id')}"
        if ref in state.report_results:
            return
        write_obx(accessor, resource, state, accessor.next_set_id("OBX"))
