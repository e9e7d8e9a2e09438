# src/hl7_fhir_bridge/transform/fhir_to_v2/appointment.py
"""
Appointment -> SCH.

SCH-2 (filler appointment id) is always written: the FILL identifier, else
the first identifier, else the resource id.
"""

from __future__ import annotations

from ...accessor import FieldAccessor
from ...mappings import APPOINTMENT_STATUS_TO_V2, lookup
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    first,
    hl7_ts,
    identifier_by_type,
    reference_id,
    set_cwe,
    set_value,
    set_xcn,
)


@register_resource_converter("Appointment")
class AppointmentToSch(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        identifiers = resource.get("identifier") or []
        placer = identifier_by_type(identifiers, "PLAC")
        filler = identifier_by_type(identifiers, "FILL")
        if filler is None:
            untyped = [i.get("value") for i in identifiers if not i.get("type")]
            filler = first(untyped) or resource.get("id")

        sch = accessor.add_segment("SCH")
        set_value(accessor, sch, 1, placer, 1)
        set_value(accessor, sch, 2, filler, 1)
        set_cwe(accessor, sch, 6, first(resource.get("reasonCode")))
        set_cwe(accessor, sch, 7, resource.get("appointmentType"))
        set_cwe(accessor, sch, 8, first(resource.get("serviceType")))
        if resource.get("minutesDuration") is not None:
            set_value(accessor, sch, 9, resource["minutesDuration"])
            set_value(accessor, sch, 10, "MIN", 1)
        start = hl7_ts(state, "Appointment", "start", resource.get("start"))
        end = hl7_ts(state, "Appointment", "end", resource.get("end"))
        set_value(accessor, sch, 11, start, 4)
        set_value(accessor, sch, 11, end, 5)

        for participant in resource.get("participant") or []:
            actor = participant.get("actor") or {}
            ref = str(actor.get("reference") or "")
            if ref.startswith("Practitioner/") and not accessor.get(sch.path(16)):
                set_xcn(accessor, sch, 16, actor, state)
            elif ref.startswith("Location/") and not accessor.get(sch.path(17)):
                location = state.resolve(actor) or {}
                name = location.get("name") or actor.get("display")
                set_value(accessor, sch, 17, name, 1)

        status = lookup(APPOINTMENT_STATUS_TO_V2, resource.get("status"))
        set_value(accessor, sch, 25, status, 1)
        set_value(accessor, sch, 26, reference_id(first(resource.get("basedOn"))), 1)
