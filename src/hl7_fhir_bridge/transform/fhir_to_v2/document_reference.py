# src/hl7_fhir_bridge/transform/fhir_to_v2/document_reference.py
"""
DocumentReference -> TXA with one OBX per content attachment (MDM^T02).

Inline data is written as an ED observation; URL-only attachments as RP.
"""

from __future__ import annotations

import base64
import binascii

from ...accessor import FieldAccessor
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    concept_code,
    first,
    first_coding,
    hl7_ts,
    set_value,
    set_xcn,
)

# docStatus -> TXA-17 document completion status
_COMPLETION = {
    "preliminary": "IP",
    "final": "AU",
    "amended": "LA",
    "entered-in-error": "CA",
}


def _is_plain_text(attachment: Json) -> bool:
    return str(attachment.get("contentType") or "").startswith("text/plain")


@register_resource_converter("DocumentReference")
class DocumentReferenceToTxa(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        set_id = accessor.next_set_id("TXA")
        txa = accessor.add_segment("TXA")
        set_value(accessor, txa, 1, set_id)
        set_value(accessor, txa, 2, concept_code(resource.get("type")) or "DOC")
        set_value(accessor, txa, 3, "TX")
        created = hl7_ts(state, "DocumentReference", "date", resource.get("date"))
        set_value(accessor, txa, 4, created)
        author = first(resource.get("author"))
        set_xcn(accessor, txa, 9, author, state)
        unique = (resource.get("masterIdentifier") or {}).get("value") or first(
            resource.get("identifier") or [{}]
        ).get("value")
        set_value(accessor, txa, 12, unique or resource.get("id"))
        completion = _COMPLETION.get(resource.get("docStatus") or "", "AU")
        set_value(accessor, txa, 17, completion)

        obx_id = 0
        for content in resource.get("content") or []:
            attachment = content.get("attachment") or {}
            label = (
                attachment.get("title")
                or first_coding(resource.get("type")).get("display")
            )
            if attachment.get("data") and _is_plain_text(attachment):
                try:
                    text = base64.b64decode(attachment["data"]).decode("utf-8")
                except (binascii.Error, UnicodeDecodeError) as e:
                    state.warn("DocumentReference", "content.attachment.data", str(e))
                    continue
                value_type, values = "TX", {1: text}
            elif attachment.get("data"):
                content_type = str(attachment.get("contentType") or "")
                major, _, minor = content_type.partition("/")
                value_type = "ED"
                values = {
                    2: major or None,
                    3: minor or None,
                    4: "Base64",
                    5: attachment["data"],
                }
            elif attachment.get("url"):
                value_type, values = "RP", {1: attachment["url"]}
            else:
                continue
            obx_id += 1
            obx = accessor.add_segment("OBX")
            set_value(accessor, obx, 1, obx_id)
            set_value(accessor, obx, 2, value_type)
            set_value(accessor, obx, 3, "DOCUMENT", 1)
            set_value(accessor, obx, 3, label or "Document", 2)
            for component, text in values.items():
                set_value(accessor, obx, 5, text, component)
            set_value(accessor, obx, 11, "F")
