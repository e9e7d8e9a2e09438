# src/hl7_fhir_bridge/transform/fhir_to_v2/diagnostic_report.py
"""
DiagnosticReport -> OBR with its results as OBX.

Result Observations found in the bundle are written directly under the OBR
(the Observation converter skips them). The conclusion becomes a TX OBX,
each conclusionCode a CE OBX and each presentedForm an ED (or RP, for URL
attachments) OBX.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from ...accessor import FieldAccessor, SegmentHandle
from ...mappings import REPORT_STATUS_TO_V2, lookup
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    concept_code,
    first,
    hl7_ts,
    order_numbers,
    set_cwe,
    set_value,
    set_xcn,
)
from .observation import write_obx
from .service_request import set_occurrence, write_obr

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)


def _report_order_numbers(
    resource: Json, state: OutboundState
) -> Tuple[Optional[str], Optional[str]]:
    """Order numbers of the report, else of the ServiceRequest it is based on."""
    placer, filler = order_numbers(resource)
    if placer or filler:
        return placer, filler
    for ref in resource.get("basedOn") or []:
        target = state.resolve(ref)
        if target is not None:
            return order_numbers(target)
    return None, None


def _text_obx(
    accessor: FieldAccessor, set_id: int, value_type: str, code: str, label: str
) -> SegmentHandle:
    obx = accessor.add_segment("OBX")
    set_value(accessor, obx, 1, set_id)
    set_value(accessor, obx, 2, value_type)
    set_value(accessor, obx, 3, code, 1)
    set_value(accessor, obx, 3, label, 2)
    set_value(accessor, obx, 11, "F")
    return obx


def _attachment_obx(accessor: FieldAccessor, set_id: int, attachment: Json) -> None:
    label = attachment.get("title") or "Report Attachment"
    if attachment.get("data"):
        obx = _text_obx(accessor, set_id, "ED", "REPORT_ATTACHMENT", label)
        major, _, minor = str(attachment.get("contentType") or "").partition("/")
        set_value(accessor, obx, 5, major or None, 2)
        set_value(accessor, obx, 5, minor or None, 3)
        set_value(accessor, obx, 5, "Base64", 4)
        set_value(accessor, obx, 5, attachment["data"], 5)
    else:
        obx = _text_obx(accessor, set_id, "RP", "REPORT_ATTACHMENT", label)
        set_value(accessor, obx, 5, attachment["url"], 1)


@register_resource_converter("DiagnosticReport")
class DiagnosticReportToOru(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        placer, filler = _report_order_numbers(resource, state)
        obr = write_obr(accessor, resource, placer, filler)
        set_occurrence(
            accessor,
            obr,
            state,
            "DiagnosticReport",
            resource.get("effectiveDateTime"),
            resource.get("effectivePeriod"),
        )
        issued = hl7_ts(state, "DiagnosticReport", "issued", resource.get("issued"))
        set_value(accessor, obr, 22, issued)
        set_value(accessor, obr, 24, concept_code(first(resource.get("category"))))
        status = lookup(REPORT_STATUS_TO_V2, resource.get("status"), "F")
        set_value(accessor, obr, 25, status)
        set_xcn(accessor, obr, 32, first(resource.get("resultsInterpreter")), state)

        set_id = 0
        for ref in resource.get("result") or []:
            observation = state.resolve(ref)
            if observation is None:
                state.warn(
                    "DiagnosticReport",
                    "result",
                    f"Result {ref.get('reference')!r} is not in the bundle",
                )
                continue
            set_id += 1
            write_obx(accessor, observation, state, set_id)

        if resource.get("conclusion"):
            set_id += 1
            obx = _text_obx(accessor, set_id, "TX", "CONCLUSION", "Report Conclusion")
            set_value(accessor, obx, 5, resource["conclusion"])
        for concept in resource.get("conclusionCode") or []:
            set_id += 1
            obx = _text_obx(
                accessor, set_id, "CE", "CONCLUSION_CODE", "Conclusion Code"
            )
            set_cwe(accessor, obx, 5, concept)
        for attachment in resource.get("presentedForm") or []:
            if not (attachment.get("data") or attachment.get("url")):
                continue
            set_id += 1
            _attachment_obx(accessor, set_id, attachment)
        LOG.debug("OBR %s written with %d OBX", accessor.get(obr.path(1)), set_id)
