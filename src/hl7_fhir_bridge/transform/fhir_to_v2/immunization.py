# src/hl7_fhir_bridge/transform/fhir_to_v2/immunization.py
"""
Immunization -> RXA (+ RXR).

RXA-5 is always written with the CVX coding system so that the message
reads back as an immunization rather than a drug administration.
"""

from __future__ import annotations

from ...accessor import FieldAccessor
from ...mappings import IMMUNIZATION_STATUS_TO_V2, lookup
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    first,
    first_coding,
    hl7_dt,
    number_text,
    set_cwe,
    set_value,
    set_xcn,
)
from .medication_administration import set_notes, set_period
from .medication_request import write_rxr


def dose_number(resource: Json) -> int:
    applied = first(resource.get("protocolApplied")) or {}
    number = applied.get("doseNumberPositiveInt")
    return number if isinstance(number, int) and number > 0 else 1


@register_resource_converter("Immunization")
class ImmunizationToRxa(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        rxa = accessor.add_segment("RXA")
        set_value(accessor, rxa, 1, 0)
        set_value(accessor, rxa, 2, dose_number(resource))
        occurrence = resource.get("occurrenceDateTime")
        set_period(accessor, rxa, state, "Immunization", occurrence)

        vaccine = resource.get("vaccineCode") or {}
        coding = first_coding(vaccine)
        set_value(accessor, rxa, 5, coding.get("code"), 1)
        set_value(accessor, rxa, 5, coding.get("display") or vaccine.get("text"), 2)
        set_value(accessor, rxa, 5, "CVX", 3)

        dose = resource.get("doseQuantity") or {}
        set_value(accessor, rxa, 6, number_text(dose.get("value")) or "1")
        set_value(accessor, rxa, 7, dose.get("code") or dose.get("unit"), 1)
        set_notes(accessor, rxa, resource.get("note"))

        performer = first(resource.get("performer")) or {}
        set_xcn(accessor, rxa, 10, performer.get("actor"), state)
        set_value(accessor, rxa, 15, resource.get("lotNumber"))
        expiration = hl7_dt(
            state, "Immunization", "expirationDate", resource.get("expirationDate")
        )
        set_value(accessor, rxa, 16, expiration)
        manufacturer = resource.get("manufacturer") or {}
        set_value(accessor, rxa, 17, manufacturer.get("display"), 2)
        set_cwe(accessor, rxa, 18, resource.get("statusReason"))
        status = lookup(IMMUNIZATION_STATUS_TO_V2, resource.get("status"), "CP")
        set_value(accessor, rxa, 20, status)
        set_value(accessor, rxa, 21, "A" if resource.get("primarySource") else "U")

        write_rxr(
            accessor, {"route": resource.get("route"), "site": resource.get("site")}
        )
