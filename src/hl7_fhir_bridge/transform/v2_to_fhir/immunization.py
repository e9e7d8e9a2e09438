# src/hl7_fhir_bridge/transform/v2_to_fhir/immunization.py
"""
RXA coded in CVX -> Immunization.

Notes
-----
- RXA-20 completion status: CP completed; NA, PA and RE not-done.
- occurrence[x] is required; without RXA-3 the message time (MSH-7) is used.
- RXA-21 action code A (add) marks the record as primary source.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fhir.resources.R4B.immunization import Immunization

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import CVX, IMMUNIZATION_STATUS_TO_FHIR, codeable, lookup
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    fhir_date,
    fhir_datetime,
    fresh_id,
    is_vaccine,
    make,
    practitioner_reference,
    require,
    scan_segments,
    value,
)
from .medication_request import quantity, route_and_site


@register("immunization")
class ImmunizationConverter:
    concept = "immunization"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        def _build(rxa: SegmentHandle, index: int) -> Optional[Immunization]:
            if not is_vaccine(accessor, rxa):
                return None
            return _build_immunization(accessor, rxa, context)

        return scan_segments(accessor, "RXA", context, _build)


def _build_immunization(
    accessor: FieldAccessor, rxa: SegmentHandle, context: ConversionContext
) -> Immunization:
    require(accessor, rxa.path(5, 1), "RXA-5-1")

    status = lookup(IMMUNIZATION_STATUS_TO_FHIR, value(accessor, rxa, 20), "completed")
    source = (value(accessor, rxa, 21) or "").upper()
    payload: Dict[str, Any] = {
        "resourceType": "Immunization",
        "id": fresh_id(),
        "status": status,
        "vaccineCode": codeable(
            CVX, value(accessor, rxa, 5, 1), value(accessor, rxa, 5, 2)
        ),
        "patient": context.patient_reference(),
        "encounter": context.encounter_reference(),
        "occurrenceDateTime": fhir_datetime(accessor, rxa, 3, context)
        or context.message_time,
        "doseQuantity": quantity(value(accessor, rxa, 6), value(accessor, rxa, 7, 1)),
        "lotNumber": value(accessor, rxa, 15),
        "expirationDate": fhir_date(accessor, rxa, 16, context),
        "primarySource": True if source == "A" else None,
    }
    payload.update(route_and_site(accessor, rxa))

    manufacturer = value(accessor, rxa, 17, 2) or value(accessor, rxa, 17)
    if manufacturer:
        payload["manufacturer"] = {"display": manufacturer}

    performer = practitioner_reference(accessor, rxa, 10)
    if performer:
        payload["performer"] = [{"actor": performer}]

    note = value(accessor, rxa, 9, 2) or value(accessor, rxa, 9)
    if note:
        payload["note"] = [{"text": note}]
    return make(Immunization, payload)
