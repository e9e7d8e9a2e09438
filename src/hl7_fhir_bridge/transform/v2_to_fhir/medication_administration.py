# src/hl7_fhir_bridge/transform/v2_to_fhir/medication_administration.py
"""
RXA (non-CVX) -> MedicationAdministration.

Notes
-----
- RXA segments coded in CVX are immunizations and are skipped here.
- ``request`` points at the MedicationRequest found through the nearest
  preceding ORC (filler, then placer), falling back to the request with the
  same ordinal.
- effective[x] is required; without RXA-3 the message time (MSH-7) is used.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fhir.resources.R4B.medicationadministration import MedicationAdministration

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import ADMIN_STATUS_TO_FHIR, RXNORM, lookup
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    codeable_concept,
    fhir_datetime,
    fresh_id,
    is_vaccine,
    make,
    order_numbers,
    practitioner_reference,
    require,
    scan_segments,
    value,
)
from .medication_request import quantity, route_and_site


@register("medication_administration")
class MedicationAdministrationConverter:
    concept = "medication_administration"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        ordinal = [0]

        def _build(
            rxa: SegmentHandle, index: int
        ) -> Optional[MedicationAdministration]:
            if is_vaccine(accessor, rxa):
                return None
            admin = _build_administration(accessor, rxa, ordinal[0], context)
            ordinal[0] += 1
            return admin

        return scan_segments(accessor, "RXA", context, _build)


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _effective(
    accessor: FieldAccessor, rxa: SegmentHandle, context: ConversionContext
) -> Dict[str, Any]:
    start = fhir_datetime(accessor, rxa, 3, context)
    end = fhir_datetime(accessor, rxa, 4, context)
    if start and end and start != end:
        return {"effectivePeriod": {"start": start, "end": end}}
    moment = start or end or context.message_time
    return {"effectiveDateTime": moment}


def _build_administration(
    accessor: FieldAccessor,
    rxa: SegmentHandle,
    ordinal: int,
    context: ConversionContext,
) -> MedicationAdministration:
    require(accessor, rxa.path(5, 1), "RXA-5-1")

    payload: Dict[str, Any] = {
        "resourceType": "MedicationAdministration",
        "id": fresh_id(),
        "status": lookup(ADMIN_STATUS_TO_FHIR, value(accessor, rxa, 20), "completed"),
        "medicationCodeableConcept": codeable_concept(
            accessor, rxa, 5, default_system=RXNORM
        ),
        "subject": context.patient_reference(),
        "context": context.encounter_reference(),
    }
    payload.update(_effective(accessor, rxa, context))

    dosage: Dict[str, Any] = {
        "dose": quantity(value(accessor, rxa, 6), value(accessor, rxa, 7, 1))
    }
    dosage.update(route_and_site(accessor, rxa))
    payload["dosage"] = dosage

    note = value(accessor, rxa, 9, 2) or value(accessor, rxa, 9)
    if note:
        payload["note"] = [{"text": note}]

    performer = practitioner_reference(accessor, rxa, 10)
    if performer:
        payload["performer"] = [{"actor": performer}]

    placer, filler = order_numbers(accessor, accessor.preceding("ORC", rxa))
    request = context.resolve_link(
        "MedicationRequest", placer=placer, filler=filler, ordinal=ordinal
    )
    if request is not None:
        payload["request"] = request.as_reference()
    return make(MedicationAdministration, payload)
