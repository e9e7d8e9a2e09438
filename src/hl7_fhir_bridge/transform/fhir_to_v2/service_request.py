# src/hl7_fhir_bridge/transform/fhir_to_v2/service_request.py
"""ServiceRequest -> ORC / OBR."""

from __future__ import annotations

from ...accessor import FieldAccessor, SegmentHandle
from ...mappings import (
    ORDER_STATUS_TO_V2,
    PRIORITY_TO_V2,
    SERVICE_REQUEST_STATUS_TO_OBR25,
    lookup,
)
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    concept_code,
    first,
    first_coding,
    hl7_ts,
    order_numbers,
    set_cwe,
    set_value,
    set_xcn,
    write_orc,
)

_CANCELLED = ("revoked", "entered-in-error")


def write_obr(accessor: FieldAccessor, resource: Json, placer, filler) -> SegmentHandle:
    """OBR-1 set id, OBR-2/3 order numbers and OBR-4 service code."""
    set_id = accessor.next_set_id("OBR")
    obr = accessor.add_segment("OBR")
    set_value(accessor, obr, 1, set_id)
    set_value(accessor, obr, 2, placer)
    set_value(accessor, obr, 3, filler)
    set_cwe(accessor, obr, 4, resource.get("code"))
    return obr


def set_occurrence(
    accessor: FieldAccessor,
    obr: SegmentHandle,
    state: OutboundState,
    rtype: str,
    moment,
    period,
) -> None:
    """OBR-7 observation start / OBR-8 observation end."""
    period = period or {}
    start = moment or period.get("start")
    set_value(accessor, obr, 7, hl7_ts(state, rtype, "occurrence", start))
    set_value(accessor, obr, 8, hl7_ts(state, rtype, "occurrence", period.get("end")))


@register_resource_converter("ServiceRequest")
class ServiceRequestToObr(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        status = resource.get("status")
        write_orc(
            accessor,
            resource,
            state,
            control="CA" if status in _CANCELLED else "NW",
            status=lookup(ORDER_STATUS_TO_V2, status),
        )

        placer, filler = order_numbers(resource)
        obr = write_obr(accessor, resource, placer, filler)
        set_value(accessor, obr, 5, lookup(PRIORITY_TO_V2, resource.get("priority")))
        set_value(
            accessor,
            obr,
            6,
            hl7_ts(state, "ServiceRequest", "authoredOn", resource.get("authoredOn")),
        )
        set_occurrence(
            accessor,
            obr,
            state,
            "ServiceRequest",
            resource.get("occurrenceDateTime"),
            resource.get("occurrencePeriod"),
        )

        reason = first(resource.get("reasonCode"))
        if reason:
            text = reason.get("text") or first_coding(reason).get("display")
            set_value(accessor, obr, 13, text)
        set_xcn(accessor, obr, 16, resource.get("requester"), state)
        set_value(accessor, obr, 24, concept_code(first(resource.get("category"))))
        set_value(accessor, obr, 25, lookup(SERVICE_REQUEST_STATUS_TO_OBR25, status))
        set_cwe(accessor, obr, 31, reason)
