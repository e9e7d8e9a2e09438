# src/hl7_fhir_bridge/transform/v2_to_fhir/specimen.py
"""
SPM -> Specimen.

Notes
-----
- An SPM with neither a specimen id (SPM-2-1) nor a type (SPM-4-1) carries
  nothing to identify and is skipped.
- SPM-2 component 2 (filler assigned id) becomes accessionIdentifier.
- SPM-20 availability sets status; a reject reason (SPM-21) makes the
  specimen unsatisfactory and is kept as a condition, as is SPM-24.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fhir.resources.R4B.specimen import Specimen

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import SPECIMEN_AVAILABILITY, lookup
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    codeable_concept,
    decimal_or_none,
    fhir_datetime,
    fresh_id,
    identifier,
    make,
    repetitions,
    scan_segments,
    value,
)


@register("specimen")
class SpecimenConverter:
    concept = "specimen"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        def _build(spm: SegmentHandle, index: int) -> Optional[Specimen]:
            if not (value(accessor, spm, 2, 1) or value(accessor, spm, 4, 1)):
                return None
            return _build_specimen(accessor, spm, context)

        return scan_segments(accessor, "SPM", context, _build)


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _collection(
    accessor: FieldAccessor, spm: SegmentHandle, context: ConversionContext
) -> Dict[str, Any]:
    quantity = None
    amount = decimal_or_none(value(accessor, spm, 12, 1))
    if amount is not None:
        quantity = {"value": amount, "unit": value(accessor, spm, 12, 2)}
    return {
        "method": codeable_concept(accessor, spm, 7),
        "bodySite": codeable_concept(accessor, spm, 8),
        "quantity": quantity,
        "collectedDateTime": fhir_datetime(accessor, spm, 17, context, 1),
    }


def _build_specimen(
    accessor: FieldAccessor, spm: SegmentHandle, context: ConversionContext
) -> Specimen:
    status = lookup(SPECIMEN_AVAILABILITY, value(accessor, spm, 20), "available")
    conditions: List[Optional[Dict[str, Any]]] = []
    reject = codeable_concept(accessor, spm, 21)
    if reject:
        status = "unsatisfactory"
        conditions.append(reject)
    conditions.append(codeable_concept(accessor, spm, 24))

    parents = [
        {"identifier": {"value": value(accessor, spm, 3, 1, repetition=rep)}}
        for rep in repetitions(accessor, spm, 3)
        if value(accessor, spm, 3, 1, repetition=rep)
    ]
    payload: Dict[str, Any] = {
        "resourceType": "Specimen",
        "id": fresh_id(),
        "status": status,
        "identifier": [identifier(value(accessor, spm, 2, 1))],
        "accessionIdentifier": identifier(value(accessor, spm, 2, 2)),
        "type": codeable_concept(accessor, spm, 4),
        "subject": context.patient_reference(),
        "parent": parents,
        "collection": _collection(accessor, spm, context),
        "receivedTime": fhir_datetime(accessor, spm, 18, context),
        "condition": conditions,
    }
    return make(Specimen, payload)
