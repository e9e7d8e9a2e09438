# src/hl7_fhir_bridge/transform/v2_to_fhir/medication_request.py
"""
RXE / RXO (with the nearest preceding ORC) -> MedicationRequest.

Notes
-----
- Each request is registered in the link index under its placer and filler
  order numbers and under ``INDEX:MedicationRequest:<n>`` so that RXA
  administrations can point back at it.
- RXE carries the encoded order (give code, dose, rate, dispense); RXO only
  the requested give code and dose.
- RXR after the order gives route and site.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fhir.resources.R4B.medicationrequest import MedicationRequest

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext, ResourceRef
from ...mappings import RXNORM, UCUM
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    codeable_concept,
    decimal_or_none,
    fhir_datetime,
    following,
    fresh_id,
    make,
    order_identifiers,
    order_numbers,
    practitioner_reference,
    require,
    scan_segments,
    value,
)

# segment -> (give code, dose amount, dose units)
_ORDER_FIELDS = {"RXE": (2, 3, 5), "RXO": (1, 2, 4)}


@register("medication_request")
class MedicationRequestConverter:
    """RXE and RXO -> MedicationRequest, linked through ORC order numbers."""

    concept = "medication_request"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        ordinal = [0]

        def _build(rx: SegmentHandle, index: int) -> MedicationRequest:
            orc = accessor.preceding("ORC", rx)
            request = _build_request(accessor, rx, orc, context)
            placer, filler = order_numbers(accessor, orc)
            context.register_link(
                ResourceRef("MedicationRequest", request.id),
                placer=placer,
                filler=filler,
                ordinal=ordinal[0],
            )
            ordinal[0] += 1
            return request

        out = scan_segments(accessor, "RXE", context, _build)
        out.extend(scan_segments(accessor, "RXO", context, _build))
        return out


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def quantity(amount: Optional[str], unit: Optional[str]) -> Optional[Dict[str, Any]]:
    number = decimal_or_none(amount)
    if number is None:
        return None
    out: Dict[str, Any] = {"value": number}
    if unit:
        out.update({"unit": unit, "system": UCUM, "code": unit})
    return out


def route_and_site(accessor: FieldAccessor, rx: SegmentHandle) -> Dict[str, Any]:
    """RXR-1 route and RXR-2 site for the order or administration at rx."""
    rxr = following(accessor, "RXR", rx)
    if rxr is None:
        return {}
    return {
        "route": codeable_concept(accessor, rxr, 1),
        "site": codeable_concept(accessor, rxr, 2),
    }


def _dosage(accessor: FieldAccessor, rx: SegmentHandle) -> Dict[str, Any]:
    _, dose_field, unit_field = _ORDER_FIELDS[rx.name]
    dose_and_rate: Dict[str, Any] = {
        "doseQuantity": quantity(
            value(accessor, rx, dose_field), value(accessor, rx, unit_field, 1)
        )
    }
    dosage: Dict[str, Any] = {}
    if rx.name == "RXE":
        dosage["text"] = value(accessor, rx, 7, 2) or value(accessor, rx, 7, 1)
        dose_and_rate["rateQuantity"] = quantity(
            value(accessor, rx, 21), value(accessor, rx, 22, 1)
        )
    dosage["doseAndRate"] = [dose_and_rate]
    dosage.update(route_and_site(accessor, rx))
    return dosage


def _dispense(accessor: FieldAccessor, rx: SegmentHandle) -> Optional[Dict[str, Any]]:
    if rx.name != "RXE":
        return None
    repeats = value(accessor, rx, 12)
    return {
        "quantity": quantity(value(accessor, rx, 10), value(accessor, rx, 11, 1)),
        "numberOfRepeatsAllowed": (
            int(repeats) if repeats and repeats.isdigit() else None
        ),
    }


def _build_request(
    accessor: FieldAccessor,
    rx: SegmentHandle,
    orc: Optional[SegmentHandle],
    context: ConversionContext,
) -> MedicationRequest:
    code_field = _ORDER_FIELDS[rx.name][0]
    require(accessor, rx.path(code_field, 1), f"{rx.name}-{code_field}-1")

    placer, filler = order_numbers(accessor, orc)
    identifiers: List[Dict[str, Any]] = order_identifiers(placer, filler)
    payload: Dict[str, Any] = {
        "resourceType": "MedicationRequest",
        "id": fresh_id(),
        "status": "active",
        "intent": "order",
        "identifier": identifiers,
        "medicationCodeableConcept": codeable_concept(
            accessor, rx, code_field, default_system=RXNORM
        ),
        "subject": context.patient_reference(),
        "encounter": context.encounter_reference(),
        "dosageInstruction": [_dosage(accessor, rx)],
        "dispenseRequest": _dispense(accessor, rx),
    }
    if orc is not None:
        payload["requester"] = practitioner_reference(accessor, orc, 12)
        payload["authoredOn"] = fhir_datetime(accessor, orc, 9, context)
    return make(MedicationRequest, payload)
