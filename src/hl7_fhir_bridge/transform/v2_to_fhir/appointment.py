# src/hl7_fhir_bridge/transform/v2_to_fhir/appointment.py
"""
SCH -> Appointment.

SCH-2 (filler appointment id) identifies the appointment and is required;
SCH-1 adds the placer id. Start and end come from SCH-11 components 4 and 5.
"""

from __future__ import annotations

from typing import Any, Dict, List

from fhir.resources.R4B.appointment import Appointment

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import APPOINTMENT_STATUS, lookup
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    codeable_concept,
    fhir_instant,
    fresh_id,
    make,
    order_identifiers,
    practitioner_reference,
    require,
    scan_segments,
    value,
)


@register("appointment")
class AppointmentConverter:
    concept = "appointment"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        def _build(sch: SegmentHandle, index: int) -> Appointment:
            return _build_appointment(accessor, sch, context)

        return scan_segments(accessor, "SCH", context, _build)


def _build_appointment(
    accessor: FieldAccessor, sch: SegmentHandle, context: ConversionContext
) -> Appointment:
    filler = require(accessor, sch.path(2, 1), "SCH-2-1")

    participants: List[Dict[str, Any]] = []
    patient = context.patient_reference()
    if patient:
        participants.append({"actor": patient, "status": "accepted"})
    contact = practitioner_reference(accessor, sch, 16)
    if contact:
        participants.append({"actor": contact, "status": "accepted"})
    if not participants:
        participants.append({"status": "needs-action"})

    duration = value(accessor, sch, 9)
    payload: Dict[str, Any] = {
        "resourceType": "Appointment",
        "id": fresh_id(),
        "status": lookup(APPOINTMENT_STATUS, value(accessor, sch, 25), "booked"),
        "identifier": order_identifiers(value(accessor, sch, 1), filler),
        "appointmentType": codeable_concept(accessor, sch, 7),
        "reasonCode": [codeable_concept(accessor, sch, 6)],
        "minutesDuration": int(duration) if duration and duration.isdigit() else None,
        "participant": participants,
    }
    payload["start"] = fhir_instant(accessor, sch, 11, context, component=4)
    payload["end"] = fhir_instant(accessor, sch, 11, context, component=5)
    return make(Appointment, payload)
