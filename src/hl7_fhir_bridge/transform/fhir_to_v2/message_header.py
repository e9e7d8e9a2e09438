# src/hl7_fhir_bridge/transform/fhir_to_v2/message_header.py
"""
MessageHeader -> MSH overrides.

Values present on the header replace the configured sending and receiving
application / facility written when the message was started.
"""

from __future__ import annotations

from ...accessor import FieldAccessor
from ..registry import register_resource_converter
from ._common import Json, OutboundState, ResourceConverterBase, first, set_value


@register_resource_converter("MessageHeader")
class MessageHeaderToMsh(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        msh = accessor.get_segment("MSH")
        if msh is None:
            msh = accessor.add_segment("MSH")

        source = resource.get("source") or {}
        set_value(accessor, msh, 3, source.get("name") or source.get("endpoint"), 1)
        set_value(accessor, msh, 4, source.get("software"), 1)

        destination = first(resource.get("destination")) or {}
        target = destination.get("name") or destination.get("endpoint")
        set_value(accessor, msh, 5, target, 1)
        receiver = destination.get("receiver") or {}
        set_value(accessor, msh, 6, receiver.get("display"), 1)
