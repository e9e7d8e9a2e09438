# src/hl7_fhir_bridge/transform/v2_to_fhir/procedure.py
"""
PR1 -> Procedure.

PR1-11 (surgeon) and PR1-12 (anesthesiologist) become performers with
function codes PPRF and SPRF.
"""

from __future__ import annotations

from typing import Any, Dict, List

from fhir.resources.R4B.procedure import Procedure

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import CPT, V3_PARTICIPATION, codeable
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    codeable_concept,
    fhir_datetime,
    fresh_id,
    make,
    practitioner_reference,
    require,
    scan_segments,
)

# PR1 field -> (function code, display)
_PERFORMER_FIELDS = (
    (11, "PPRF", "primary performer"),
    (12, "SPRF", "secondary performer"),
)


@register("procedure")
class ProcedureConverter:
    concept = "procedure"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        def _build(pr1: SegmentHandle, index: int) -> Procedure:
            require(accessor, pr1.path(3, 1), "PR1-3-1")
            performers: List[Dict[str, Any]] = []
            for field, code, display in _PERFORMER_FIELDS:
                actor = practitioner_reference(accessor, pr1, field)
                if actor:
                    function = codeable(V3_PARTICIPATION, code, display)
                    performers.append({"function": function, "actor": actor})
            payload: Dict[str, Any] = {
                "resourceType": "Procedure",
                "id": fresh_id(),
                "status": "completed",
                "code": codeable_concept(accessor, pr1, 3, default_system=CPT),
                "subject": context.patient_reference(),
                "encounter": context.encounter_reference(),
                "performedDateTime": fhir_datetime(accessor, pr1, 5, context),
                "performer": performers,
            }
            return make(Procedure, payload)

        return scan_segments(accessor, "PR1", context, _build)
