# src/hl7_fhir_bridge/transform/v2_to_fhir/diagnostic_report.py
"""
OBR -> DiagnosticReport for result messages.

An OBR yields a report when the message is an ORU or when OBR-25 (result
status) is set. ``basedOn`` resolves the ServiceRequest built for the same
OBR through the link index (filler, then placer, then ordinal); ``result``
lists the Observations recorded under this OBR by the observation converter.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fhir.resources.R4B.diagnosticreport import DiagnosticReport

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import LOINC, REPORT_STATUS, lookup
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    codeable_concept,
    fhir_datetime,
    fhir_instant,
    fresh_id,
    identifier,
    make,
    practitioner_id,
    prune,
    require,
    scan_segments,
    value,
)
from .service_request import obr_order_numbers


@register("diagnostic_report")
class DiagnosticReportConverter:
    concept = "diagnostic_report"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        is_result_message = (context.message_type or "").upper() == "ORU"

        def _build(obr: SegmentHandle, index: int) -> Optional[DiagnosticReport]:
            if not is_result_message and value(accessor, obr, 25) is None:
                return None
            return _build_report(accessor, obr, index, context)

        return scan_segments(accessor, "OBR", context, _build)


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _interpreter(
    accessor: FieldAccessor, obr: SegmentHandle
) -> Optional[Dict[str, str]]:
    """OBR-32 principal result interpreter (NDL: id&family&given in comp 1)."""
    xid = accessor.get(obr.path(32, 1, 1))
    family = accessor.get(obr.path(32, 1, 2))
    given = accessor.get(obr.path(32, 1, 3))
    display = " ".join(p for p in (given, family) if p) or None
    if not xid and not display:
        return None
    return prune(
        {
            "reference": f"Practitioner/{practitioner_id(xid)}" if xid else None,
            "display": display,
        }
    )


def _conclusion(accessor: FieldAccessor, obr: SegmentHandle) -> Optional[str]:
    lines: List[str] = []
    for nte in accessor.trailing("NTE", obr):
        text = value(accessor, nte, 3)
        if text:
            lines.append(text)
    return "\n".join(lines) or None


def _build_report(
    accessor: FieldAccessor,
    obr: SegmentHandle,
    index: int,
    context: ConversionContext,
) -> DiagnosticReport:
    require(accessor, obr.path(4, 1), "OBR-4-1")

    placer, filler = obr_order_numbers(accessor, obr, accessor.preceding("ORC", obr))
    payload: Dict[str, Any] = {
        "resourceType": "DiagnosticReport",
        "id": fresh_id(),
        "status": lookup(REPORT_STATUS, value(accessor, obr, 25), "final"),
        "code": codeable_concept(accessor, obr, 4, default_system=LOINC),
        "subject": context.patient_reference(),
        "encounter": context.encounter_reference(),
        "effectiveDateTime": fhir_datetime(accessor, obr, 7, context),
        "issued": fhir_instant(accessor, obr, 22, context),
        "identifier": [
            identifier(value(accessor, obr, 2)),
            identifier(value(accessor, obr, 3)),
        ],
        "conclusion": _conclusion(accessor, obr),
    }

    interpreter = _interpreter(accessor, obr)
    if interpreter:
        payload["resultsInterpreter"] = [interpreter]

    request = context.resolve_link(
        "ServiceRequest", placer=placer, filler=filler, ordinal=index
    )
    if request is not None:
        payload["basedOn"] = [request.as_reference()]

    results = context.observations_by_order.get(obr.index, [])
    if results:
        payload["result"] = [{"reference": ref} for ref in results]
    return make(DiagnosticReport, payload)
