# src/hl7_fhir_bridge/transform/v2_to_fhir/observation.py
"""
OBX (+ trailing NTE) -> Observation; free-standing NTE -> note Observation.

Notes
-----
- OBX-2 chooses the value type: NM (or a numeric OBX-5) -> valueQuantity,
  CE/CWE -> valueCodeableConcept, anything else -> valueString.
- Each Observation is recorded under the nearest preceding OBR so that the
  diagnostic report converter can list it in ``result``.
- An NTE that does not follow an OBX, NTE chain or OBR becomes its own
  Observation coded LOINC 34109-9.
- OBX segments that follow a TXA belong to that document and are left to
  the document converter.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Set

from fhir.resources.R4B.observation import Observation

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import (
    LOINC,
    NOTE_LOINC,
    OBSERVATION_STATUS,
    UCUM,
    V3_INTERPRETATION,
    INTERPRETATION,
    codeable,
    lookup,
)
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    MAX_REPETITIONS,
    codeable_concept,
    decimal_or_none,
    document_for,
    fhir_datetime,
    fresh_id,
    make,
    practitioner_reference,
    require,
    scan_segments,
    value,
)

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

_CODED_TYPES = frozenset({"CE", "CWE", "CNE", "CF"})
_NUMERIC_TYPES = frozenset({"NM", "SN"})


@register("observation")
class ObservationConverter:
    """OBX -> Observation, standalone NTE -> note Observation."""

    concept = "observation"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        attached: Set[int] = set()

        def _build(obx: SegmentHandle, index: int) -> Optional[Observation]:
            notes = accessor.trailing("NTE", obx)
            attached.update(n.position for n in notes)
            if document_for(accessor, obx) is not None:
                # document body, converted with its TXA
                return None
            obs = _build_observation(accessor, obx, notes, context)
            obr = accessor.preceding("OBR", obx)
            if obr is not None:
                context.observations_by_order.setdefault(obr.index, []).append(
                    f"Observation/{obs.id}"
                )
            return obs

        out = scan_segments(accessor, "OBX", context, _build)
        out.extend(self._standalone_notes(accessor, context, attached))
        return out

    @staticmethod
    def _standalone_notes(
        accessor: FieldAccessor, context: ConversionContext, attached: Set[int]
    ) -> List[Observation]:
        for obr in accessor.segments("OBR"):
            attached.update(n.position for n in accessor.trailing("NTE", obr))

        out: List[Observation] = []
        for nte in accessor.segments("NTE")[:MAX_REPETITIONS]:
            if nte.position in attached:
                continue
            text = _note_text(accessor, [nte])
            if not text:
                continue
            payload = {
                "resourceType": "Observation",
                "id": fresh_id(),
                "status": "final",
                "code": codeable(LOINC, NOTE_LOINC, "Note"),
                "subject": context.patient_reference(),
                "encounter": context.encounter_reference(),
                "valueString": text,
            }
            out.append(make(Observation, payload))
        return out


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _note_text(accessor: FieldAccessor, notes: List[SegmentHandle]) -> Optional[str]:
    lines = []
    for nte in notes:
        for rep in range(max(accessor.count_repetitions(nte.path(3)), 1)):
            text = value(accessor, nte, 3, repetition=rep)
            if text:
                lines.append(text)
    return "\n".join(lines) or None


def _value_element(
    accessor: FieldAccessor, obx: SegmentHandle, value_type: Optional[str]
) -> Dict[str, Any]:
    raw = value(accessor, obx, 5)
    if raw is None:
        return {}
    vtype = (value_type or "").upper()

    if vtype in _CODED_TYPES:
        concept = codeable_concept(accessor, obx, 5)
        if concept:
            return {"valueCodeableConcept": concept}

    number = decimal_or_none(raw)
    if vtype in _NUMERIC_TYPES or (not vtype and number is not None):
        if number is not None:
            quantity: Dict[str, Any] = {"value": number}
            unit_code = value(accessor, obx, 6, 1)
            if unit_code:
                quantity["unit"] = value(accessor, obx, 6, 2) or unit_code
                quantity["system"] = UCUM
                quantity["code"] = unit_code
            return {"valueQuantity": quantity}

    return {"valueString": raw}


def _build_observation(
    accessor: FieldAccessor,
    obx: SegmentHandle,
    notes: List[SegmentHandle],
    context: ConversionContext,
) -> Observation:
    require(accessor, obx.path(3, 1), "OBX-3-1")

    payload: Dict[str, Any] = {
        "resourceType": "Observation",
        "id": fresh_id(),
        "status": lookup(OBSERVATION_STATUS, value(accessor, obx, 11), "final"),
        "code": codeable_concept(accessor, obx, 3, default_system=LOINC),
        "subject": context.patient_reference(),
        "encounter": context.encounter_reference(),
        "effectiveDateTime": fhir_datetime(accessor, obx, 14, context),
    }
    payload.update(_value_element(accessor, obx, value(accessor, obx, 2)))

    ref_range = value(accessor, obx, 7)
    if ref_range:
        payload["referenceRange"] = [{"text": ref_range}]

    flag = value(accessor, obx, 8)
    if flag:
        payload["interpretation"] = [
            codeable(V3_INTERPRETATION, flag, lookup(INTERPRETATION, flag))
        ]

    performer = practitioner_reference(accessor, obx, 16)
    if performer:
        payload["performer"] = [performer]

    note = _note_text(accessor, notes)
    if note:
        payload["note"] = [{"text": note}]
    return make(Observation, payload)
