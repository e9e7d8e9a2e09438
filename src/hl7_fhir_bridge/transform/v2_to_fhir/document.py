# src/hl7_fhir_bridge/transform/v2_to_fhir/document.py
"""
TXA (+ the OBX segments after it) -> DocumentReference (MDM messages).

Notes
-----
- TXA-12 unique document number becomes masterIdentifier; a TXA with
  neither TXA-12 nor a document type (TXA-2) is skipped.
- Each document OBX becomes one content attachment. ED keeps its MIME type
  and data and RP becomes an attachment URL; any other value type is text,
  its repetitions joined as lines and base64 encoded as text/plain.
- Without document OBX segments a single attachment describes the
  presentation (TXA-3) and file name (TXA-16).
- TXA-17 completion status sets docStatus; a cancelled document (CA) is
  entered-in-error.
"""

from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional

from fhir.resources.R4B.documentreference import DocumentReference

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import (
    CONFIDENTIALITY_CODES,
    CONTENT_PRESENTATION,
    DOCUMENT_COMPLETION,
    V3_CONFIDENTIALITY,
    codeable,
    lookup,
)
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    MAX_REPETITIONS,
    codeable_concept,
    fhir_instant,
    fresh_id,
    identifier,
    make,
    order_identifiers,
    practitioner_reference,
    scan_segments,
    value,
)


@register("document")
class DocumentConverter:
    """TXA -> DocumentReference, body taken from the document OBX segments."""

    concept = "document"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        def _build(txa: SegmentHandle, index: int) -> Optional[DocumentReference]:
            if not (value(accessor, txa, 12, 1) or value(accessor, txa, 2, 1)):
                return None
            return _build_document(accessor, txa, context)

        return scan_segments(accessor, "TXA", context, _build)


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def document_body(accessor: FieldAccessor, txa: SegmentHandle) -> List[SegmentHandle]:
    """OBX segments between ``txa`` and the next TXA."""
    out: List[SegmentHandle] = []
    for other in accessor.segments()[txa.position + 1 :]:
        if other.name == "TXA" or len(out) >= MAX_REPETITIONS:
            break
        if other.name == "OBX":
            out.append(other)
    return out


def _attachment(
    accessor: FieldAccessor, obx: SegmentHandle
) -> Optional[Dict[str, Any]]:
    vtype = (value(accessor, obx, 2) or "TX").upper()
    title = value(accessor, obx, 3, 2) or value(accessor, obx, 3, 1)

    if vtype == "ED":
        data = value(accessor, obx, 5, 5)
        if not data:
            return None
        if (value(accessor, obx, 5, 4) or "").upper() != "BASE64":
            data = base64.b64encode(data.encode("utf-8")).decode("ascii")
        major, minor = value(accessor, obx, 5, 2), value(accessor, obx, 5, 3)
        content_type = f"{major}/{minor}" if major and minor else major
        return {"contentType": content_type, "data": data, "title": title}

    if vtype == "RP":
        url = value(accessor, obx, 5, 1)
        return {"url": url, "title": title} if url else None

    lines = []
    for rep in range(max(accessor.count_repetitions(obx.path(5)), 1)):
        line = value(accessor, obx, 5, repetition=rep)
        if line is not None:
            lines.append(line)
    if not lines:
        return None
    data = base64.b64encode("\n".join(lines).encode("utf-8")).decode("ascii")
    return {"contentType": "text/plain", "data": data, "title": title}


def _content(accessor: FieldAccessor, txa: SegmentHandle) -> List[Dict[str, Any]]:
    attachments = [_attachment(accessor, obx) for obx in document_body(accessor, txa)]
    out = [{"attachment": a} for a in attachments if a]
    file_name = value(accessor, txa, 16)
    if not out:
        presentation = value(accessor, txa, 3)
        content_type = lookup(CONTENT_PRESENTATION, presentation, "text/plain")
        out = [{"attachment": {"contentType": content_type, "title": file_name}}]
    elif file_name and not out[0]["attachment"].get("title"):
        out[0]["attachment"]["title"] = file_name
    return out


def _authors(accessor: FieldAccessor, txa: SegmentHandle) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for field in (5, 9):
        ref = practitioner_reference(accessor, txa, field)
        if ref and ref not in out:
            out.append(ref)
    return out


def _build_document(
    accessor: FieldAccessor, txa: SegmentHandle, context: ConversionContext
) -> DocumentReference:
    doc_status = lookup(DOCUMENT_COMPLETION, value(accessor, txa, 17))
    status = "entered-in-error" if doc_status == "entered-in-error" else "current"

    payload: Dict[str, Any] = {
        "resourceType": "DocumentReference",
        "id": fresh_id(),
        "masterIdentifier": identifier(value(accessor, txa, 12, 1)),
        "identifier": order_identifiers(
            value(accessor, txa, 14, 1), value(accessor, txa, 15, 1)
        ),
        "status": status,
        "docStatus": doc_status,
        "type": codeable_concept(accessor, txa, 2),
        "subject": context.patient_reference(),
        "date": fhir_instant(accessor, txa, 4, context)
        or fhir_instant(accessor, txa, 6, context),
        "author": _authors(accessor, txa),
        "authenticator": practitioner_reference(accessor, txa, 22),
        "content": _content(accessor, txa),
        "context": {"encounter": [context.encounter_reference()]},
    }

    parent = value(accessor, txa, 13, 1)
    if parent:
        target = {"identifier": {"value": parent}}
        payload["relatesTo"] = [{"code": "replaces", "target": target}]
    confidentiality = (value(accessor, txa, 18) or "").upper()
    if confidentiality in CONFIDENTIALITY_CODES:
        payload["securityLabel"] = [codeable(V3_CONFIDENTIALITY, confidentiality)]
    return make(DocumentReference, payload)
