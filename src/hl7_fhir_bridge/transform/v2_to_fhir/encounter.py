# src/hl7_fhir_bridge/transform/v2_to_fhir/encounter.py
"""
PV1 / PV2 -> Encounter (and the Location named by PV1-3).

Notes
-----
- Runs only when PV1 is present; the id becomes ``context.encounter_id``.
- Encounter.status follows the trigger event (A03 -> finished, otherwise
  in-progress).
- Encounter.class is required in R4; an empty PV1-2 maps to NullFlavor UNK.
- PV1-3 (point of care^room^bed^facility) creates a Location straight into
  the bundle; the Encounter references it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fhir.resources.R4B.encounter import Encounter
from fhir.resources.R4B.location import Location

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...detection import encounter_status_for_trigger
from ...mappings import (
    LOCATION_PHYSICAL_TYPE,
    PARTICIPANT_DISPLAY,
    PARTICIPANT_FIELDS,
    PATIENT_CLASS_TO_FHIR,
    V2_0004,
    V2_0007,
    V2_0069,
    V3_ACT_CODE,
    V3_NULL_FLAVOR,
    V3_PARTICIPATION,
    codeable,
    coding,
    lookup,
)
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    codeable_concept,
    fhir_datetime,
    fresh_id,
    identifier,
    make,
    practitioner_reference,
    repetitions,
    value,
)

LOG = logging.getLogger(__name__)


@register("encounter")
class EncounterConverter:
    """PV1 -> Encounter; PV1-3 -> Location."""

    concept = "encounter"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        pv1s = accessor.segments("PV1")
        if not pv1s:
            return []
        pv1 = pv1s[0]

        try:
            location = _build_location(accessor, pv1)
            payload = self._encounter_payload(accessor, pv1, context)
            if location is not None:
                payload["location"] = [
                    {"location": {"reference": f"Location/{location.id}"}}
                ]
            encounter = make(Encounter, payload)
        except Exception as exc:  # recorded; no Encounter
            context.record_segment_error(
                "PV1", 0, f"Failed to convert PV1: {exc}", exc=exc,
                field=getattr(exc, "field", None),
            )
            return []

        if location is not None:
            bundle.add(location)
            context.location_id = location.id
        context.encounter_id = encounter.id
        return [encounter]

    # --------------------------------------------------------------------------
    # internal helpers
    # --------------------------------------------------------------------------

    @staticmethod
    def _encounter_payload(
        accessor: FieldAccessor, pv1: SegmentHandle, context: ConversionContext
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "resourceType": "Encounter",
            "id": fresh_id(),
            "status": encounter_status_for_trigger(context.trigger_event),
            "class": _encounter_class(value(accessor, pv1, 2)),
            "subject": context.patient_reference(),
            "identifier": [identifier(value(accessor, pv1, 19))],
            "type": [_type(accessor, pv1, 4, V2_0007)],
            "serviceType": _type(accessor, pv1, 10, V2_0069),
            "participant": _participants(accessor, pv1),
            "period": _period(accessor, pv1, context),
        }
        pv2s = accessor.segments("PV2")
        if pv2s:
            reason = codeable_concept(accessor, pv2s[0], 3)
            if reason:
                payload["reasonCode"] = [reason]
        return payload


# ------------------------------------------------------------------------------
# PV1 field helpers
# ------------------------------------------------------------------------------


def _encounter_class(code: Optional[str]) -> Dict[str, str]:
    if not code:
        return coding(V3_NULL_FLAVOR, "UNK", "unknown")
    mapped = lookup(PATIENT_CLASS_TO_FHIR, code)
    if mapped is None:
        # unrecognized class kept as a raw v2 code
        return coding(V2_0004, code)
    return coding(V3_ACT_CODE, mapped["code"], mapped["display"])


def _type(
    accessor: FieldAccessor, pv1: SegmentHandle, field: int, system: str
) -> Optional[Dict[str, Any]]:
    return codeable(
        system, value(accessor, pv1, field, 1), value(accessor, pv1, field, 2)
    )


def _participants(accessor: FieldAccessor, pv1: SegmentHandle) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for role, field in PARTICIPANT_FIELDS.items():
        for rep in repetitions(accessor, pv1, field):
            ref = practitioner_reference(accessor, pv1, field, rep)
            if ref is None:
                continue
            kind = codeable(V3_PARTICIPATION, role, PARTICIPANT_DISPLAY[role])
            out.append({"type": [kind], "individual": ref})
    return out


def _period(
    accessor: FieldAccessor, pv1: SegmentHandle, context: ConversionContext
) -> Dict[str, str]:
    start = fhir_datetime(accessor, pv1, 44, context)
    if start is None:
        evns = accessor.segments("EVN")
        if evns:
            start = fhir_datetime(accessor, evns[0], 2, context)
    period: Dict[str, str] = {}
    if start:
        period["start"] = start
    end = fhir_datetime(accessor, pv1, 45, context)
    if end:
        period["end"] = end
    return period


def _build_location(accessor: FieldAccessor, pv1: SegmentHandle) -> Optional[Location]:
    """PV1-3 -> Location named "<point of care> <room> <bed>"."""
    poc = value(accessor, pv1, 3, 1)
    room = value(accessor, pv1, 3, 2)
    bed = value(accessor, pv1, 3, 3)
    facility = value(accessor, pv1, 3, 4)
    parts = [p for p in (poc, room, bed) if p]
    if not parts:
        return None
    if bed:
        physical = ("bd", "Bed")
    elif room:
        physical = ("ro", "Room")
    else:
        physical = ("wa", "Ward")
    payload: Dict[str, Any] = {
        "resourceType": "Location",
        "id": fresh_id(),
        "name": " ".join(parts),
        "status": "active",
        "mode": "instance",
        "physicalType": codeable(LOCATION_PHYSICAL_TYPE, *physical),
        "description": facility,
    }
    LOG.debug("Location %r built from PV1-3", payload["name"])
    return make(Location, payload)
