# src/hl7_fhir_bridge/transform/v2_to_fhir/service_request.py
"""
OBR (with the nearest preceding ORC) -> ServiceRequest.

Notes
-----
- Status: a cancelling order control in ORC-1 wins; otherwise ORC-5 order
  status; default active.
- Placer and filler numbers come from OBR-2/3, falling back to ORC-2/3.
- Each request is registered in the link index (placer, filler and
  ``INDEX:ServiceRequest:<n>``) for the diagnostic report converter.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from fhir.resources.R4B.servicerequest import ServiceRequest

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext, ResourceRef
from ...mappings import (
    CANCEL_ORDER_CONTROLS,
    LOINC,
    ORDER_STATUS,
    PRIORITY_TO_FHIR,
    lookup,
)
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    codeable_concept,
    fhir_datetime,
    fresh_id,
    make,
    order_identifiers,
    practitioner_reference,
    require,
    scan_segments,
    value,
)


@register("service_request")
class ServiceRequestConverter:
    concept = "service_request"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        def _build(obr: SegmentHandle, index: int) -> ServiceRequest:
            orc = accessor.preceding("ORC", obr)
            placer, filler = obr_order_numbers(accessor, obr, orc)
            request = _build_request(accessor, obr, orc, placer, filler, context)
            context.register_link(
                ResourceRef("ServiceRequest", request.id),
                placer=placer,
                filler=filler,
                ordinal=index,
            )
            return request

        return scan_segments(accessor, "OBR", context, _build)


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def obr_order_numbers(
    accessor: FieldAccessor, obr: SegmentHandle, orc: Optional[SegmentHandle]
) -> Tuple[Optional[str], Optional[str]]:
    """(placer, filler): OBR-2 / OBR-3, falling back to ORC-2 / ORC-3."""
    placer = value(accessor, obr, 2)
    filler = value(accessor, obr, 3)
    if orc is not None:
        placer = placer or value(accessor, orc, 2)
        filler = filler or value(accessor, orc, 3)
    return placer, filler


def _status(accessor: FieldAccessor, orc: Optional[SegmentHandle]) -> str:
    if orc is None:
        return "active"
    control = (value(accessor, orc, 1) or "").upper()
    if control in CANCEL_ORDER_CONTROLS:
        return "revoked"
    return lookup(ORDER_STATUS, value(accessor, orc, 5), "active")


def _priority(
    accessor: FieldAccessor, obr: SegmentHandle, orc: Optional[SegmentHandle]
) -> str:
    code = value(accessor, obr, 5)
    if code is None and orc is not None:
        # ORC-7 quantity/timing: priority is component 6
        code = value(accessor, orc, 7, 6) or value(accessor, orc, 7)
    return lookup(PRIORITY_TO_FHIR, code, "routine")


def _build_request(
    accessor: FieldAccessor,
    obr: SegmentHandle,
    orc: Optional[SegmentHandle],
    placer: Optional[str],
    filler: Optional[str],
    context: ConversionContext,
) -> ServiceRequest:
    require(accessor, obr.path(4, 1), "OBR-4-1")

    payload: Dict[str, Any] = {
        "resourceType": "ServiceRequest",
        "id": fresh_id(),
        "status": _status(accessor, orc),
        "intent": "order",
        "priority": _priority(accessor, obr, orc),
        "identifier": order_identifiers(placer, filler),
        "code": codeable_concept(accessor, obr, 4, default_system=LOINC),
        "subject": context.patient_reference(),
        "encounter": context.encounter_reference(),
        "occurrenceDateTime": fhir_datetime(accessor, obr, 27, context, component=4)
        or fhir_datetime(accessor, obr, 7, context),
    }

    reason = codeable_concept(accessor, obr, 31)
    if reason:
        payload["reasonCode"] = [reason]

    requester = practitioner_reference(accessor, obr, 16)
    if orc is not None:
        requester = requester or practitioner_reference(accessor, orc, 12)
        payload["authoredOn"] = fhir_datetime(accessor, orc, 9, context)
    payload["requester"] = requester
    return make(ServiceRequest, payload)
