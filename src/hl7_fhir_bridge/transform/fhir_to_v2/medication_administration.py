# src/hl7_fhir_bridge/transform/fhir_to_v2/medication_administration.py
"""MedicationAdministration -> RXA (+ RXR)."""

from __future__ import annotations

from typing import Optional

from ...accessor import FieldAccessor, SegmentHandle
from ...mappings import ADMIN_STATUS_TO_V2, lookup
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
    set_xcn,
)
from .medication_request import set_quantity, write_rxr


def set_period(
    accessor: FieldAccessor,
    rxa: SegmentHandle,
    state: OutboundState,
    rtype: str,
    moment: Optional[str],
    period: Optional[Json] = None,
) -> None:
    """RXA-3 start / RXA-4 end; a single moment fills both."""
    period = period or {}
    start = moment or period.get("start")
    end = period.get("end") or start
    start_ts = hl7_ts(state, rtype, "effective", start)
    end_ts = start_ts if end == start else hl7_ts(state, rtype, "effective", end)
    set_value(accessor, rxa, 3, start_ts)
    set_value(accessor, rxa, 4, end_ts)


def set_notes(accessor: FieldAccessor, rxa: SegmentHandle, notes) -> None:
    """Annotation texts -> RXA-9 repetitions (text component)."""
    rep = 0
    for note in notes or []:
        if note.get("text"):
            set_value(accessor, rxa, 9, note["text"], 2, rep)
            rep += 1


@register_resource_converter("MedicationAdministration")
class MedicationAdministrationToRxa(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        rxa = accessor.add_segment("RXA")
        set_value(accessor, rxa, 1, 0)
        set_value(accessor, rxa, 2, len(accessor.segments("RXA")))
        set_period(
            accessor,
            rxa,
            state,
            "MedicationAdministration",
            resource.get("effectiveDateTime"),
            resource.get("effectivePeriod"),
        )
        set_cwe(accessor, rxa, 5, resource.get("medicationCodeableConcept"))
        if not resource.get("medicationCodeableConcept"):
            display = (resource.get("medicationReference") or {}).get("display")
            set_value(accessor, rxa, 5, display, 2)

        dosage = resource.get("dosage") or {}
        set_quantity(accessor, rxa, 6, 7, dosage.get("dose") or {})
        set_notes(accessor, rxa, resource.get("note"))

        performer = first(resource.get("performer")) or {}
        set_xcn(accessor, rxa, 10, performer.get("actor"), state)
        site = dosage.get("site") or {}
        set_value(
            accessor, rxa, 11, site.get("text") or first_coding(site).get("display")
        )
        reason = first(resource.get("statusReason") or resource.get("reasonCode"))
        set_cwe(accessor, rxa, 18, reason)
        status = lookup(ADMIN_STATUS_TO_V2, resource.get("status"), "RE")
        set_value(accessor, rxa, 20, status)

        write_rxr(accessor, dosage)
