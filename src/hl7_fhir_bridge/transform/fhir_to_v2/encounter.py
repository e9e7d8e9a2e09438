# src/hl7_fhir_bridge/transform/fhir_to_v2/encounter.py
"""
Encounter -> PV1 / PV2.

Encounter.class is a Coding in R4 and a list of CodeableConcepts in R5;
both shapes are accepted. PV1 is shared with the Practitioner converter,
which may already have filled PV1-7..9.
"""

from __future__ import annotations

from typing import List, Mapping, Optional

from ...accessor import FieldAccessor, SegmentHandle
from ...mappings import PARTICIPANT_FIELDS, PATIENT_CLASS_TO_V2, lookup
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    concept_code,
    first,
    first_identifier,
    hl7_ts,
    segment_for,
    set_cwe,
    set_value,
    set_xcn,
)


def patient_class(encounter: Json) -> str:
    """Encounter.class -> PV1-2 (I, O, E, P, ...; U when unknown)."""
    cls = encounter.get("class")
    if isinstance(cls, list):
        code = concept_code(first(cls))
    elif isinstance(cls, Mapping):
        code = cls.get("code")
    else:
        code = None
    if not code:
        return "U"
    mapped = lookup(PATIENT_CLASS_TO_V2, code)
    if mapped:
        return mapped
    return code if len(code) == 1 else "U"


@register_resource_converter("Encounter")
class EncounterToPv1(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        pv1 = segment_for(accessor, "PV1")
        set_value(accessor, pv1, 1, 1)
        set_value(accessor, pv1, 2, patient_class(resource))
        self._location(accessor, pv1, resource, state)
        set_value(accessor, pv1, 4, concept_code(first(resource.get("type"))))

        for part in resource.get("participant") or []:
            role = concept_code(first(part.get("type")))
            field_no = PARTICIPANT_FIELDS.get(role or "")
            if field_no is None:
                continue
            rep = self._next_repetition(accessor, pv1, field_no)
            set_xcn(
                accessor, pv1, field_no, part.get("individual"), state, rep, unique=True
            )

        set_value(accessor, pv1, 10, concept_code(first(resource.get("serviceType"))))
        set_value(accessor, pv1, 19, first_identifier(resource))
        period = resource.get("period") or {}
        start = hl7_ts(state, "Encounter", "period.start", period.get("start"))
        end = hl7_ts(state, "Encounter", "period.end", period.get("end"))
        set_value(accessor, pv1, 44, start)
        set_value(accessor, pv1, 45, end)

        reasons: List[Json] = resource.get("reasonCode") or []
        if reasons:
            pv2 = segment_for(accessor, "PV2")
            set_cwe(accessor, pv2, 3, reasons[0])

    @staticmethod
    def _next_repetition(
        accessor: FieldAccessor, pv1: SegmentHandle, field_no: int
    ) -> int:
        return accessor.count_repetitions(pv1.path(field_no))

    @staticmethod
    def _location(
        accessor: FieldAccessor,
        pv1: SegmentHandle,
        resource: Json,
        state: OutboundState,
    ) -> None:
        """PV1-3 point of care^room^bed from the first location's name."""
        entry = first(resource.get("location")) or {}
        ref = entry.get("location") if isinstance(entry, Mapping) else None
        target = state.resolve(ref)
        name: Optional[str] = (target or {}).get("name") or (ref or {}).get("display")
        if not name:
            return
        for component, part in enumerate(name.split()[:3], start=1):
            set_value(accessor, pv1, 3, part, component)
