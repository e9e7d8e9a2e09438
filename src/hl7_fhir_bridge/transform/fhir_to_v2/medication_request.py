# src/hl7_fhir_bridge/transform/fhir_to_v2/medication_request.py
"""
MedicationRequest -> ORC / RXE / RXR.

Dose, rate and route come from the first dosageInstruction; dispense
quantity and refills from dispenseRequest.
"""

from __future__ import annotations

from ...accessor import FieldAccessor, SegmentHandle
from ...mappings import ORDER_STATUS_TO_V2, lookup
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    first,
    first_identifier,
    number_text,
    set_cwe,
    set_value,
    write_orc,
)


def set_quantity(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    amount_field: int,
    unit_field: int,
    qty: Json,
) -> None:
    """Quantity -> amount field plus unit field (code, else unit)."""
    if not qty:
        return
    set_value(accessor, handle, amount_field, number_text(qty.get("value")))
    set_value(accessor, handle, unit_field, qty.get("code") or qty.get("unit"), 1)


def write_rxr(accessor: FieldAccessor, dosage: Json) -> None:
    """RXR-1 route / RXR-2 site, only when the dosage carries either."""
    if not (dosage.get("route") or dosage.get("site")):
        return
    rxr = accessor.add_segment("RXR")
    set_cwe(accessor, rxr, 1, dosage.get("route"))
    set_cwe(accessor, rxr, 2, dosage.get("site"))


@register_resource_converter("MedicationRequest")
class MedicationRequestToRxe(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        write_orc(
            accessor,
            resource,
            state,
            status=lookup(ORDER_STATUS_TO_V2, resource.get("status")),
        )

        rxe = accessor.add_segment("RXE")
        set_cwe(accessor, rxe, 2, resource.get("medicationCodeableConcept"))
        if not resource.get("medicationCodeableConcept"):
            display = (resource.get("medicationReference") or {}).get("display")
            set_value(accessor, rxe, 2, display, 2)

        dosage = first(resource.get("dosageInstruction")) or {}
        dose_and_rate = first(dosage.get("doseAndRate")) or {}
        set_quantity(accessor, rxe, 3, 5, dose_and_rate.get("doseQuantity") or {})
        set_value(accessor, rxe, 7, dosage.get("text"), 2)

        dispense = resource.get("dispenseRequest") or {}
        set_quantity(accessor, rxe, 10, 11, dispense.get("quantity") or {})
        set_value(accessor, rxe, 12, dispense.get("numberOfRepeatsAllowed"))
        set_value(accessor, rxe, 15, first_identifier(resource))
        set_quantity(accessor, rxe, 21, 22, dose_and_rate.get("rateQuantity") or {})
        set_value(accessor, rxe, 31, resource.get("intent"))

        write_rxr(accessor, dosage)
