# src/hl7_fhir_bridge/transform/fhir_to_v2/specimen.py
"""
Specimen -> SPM.

SPM-2 carries the first identifier (component 1) and the accession
identifier (component 2). A rejected specimen (status unsatisfactory)
writes its first condition as the reject reason (SPM-21); otherwise the
condition goes to SPM-24.
"""

from __future__ import annotations

from ...accessor import FieldAccessor
from ...mappings import SPECIMEN_AVAILABILITY_TO_V2, lookup
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    concept_code,
    first,
    first_identifier,
    hl7_ts,
    number_text,
    reference_id,
    set_cwe,
    set_value,
)


@register_resource_converter("Specimen")
class SpecimenToSpm(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        set_id = accessor.next_set_id("SPM")
        spm = accessor.add_segment("SPM")
        set_value(accessor, spm, 1, set_id)
        set_value(accessor, spm, 2, first_identifier(resource) or resource.get("id"), 1)
        accession = resource.get("accessionIdentifier") or {}
        set_value(accessor, spm, 2, accession.get("value"), 2)
        for rep, parent in enumerate(resource.get("parent") or []):
            set_value(accessor, spm, 3, reference_id(parent), 1, rep)
        set_cwe(accessor, spm, 4, resource.get("type"))

        collection = resource.get("collection") or {}
        set_cwe(accessor, spm, 7, collection.get("method"))
        set_cwe(accessor, spm, 8, collection.get("bodySite"))
        quantity = collection.get("quantity") or {}
        set_value(accessor, spm, 12, number_text(quantity.get("value")), 1)
        set_value(accessor, spm, 12, quantity.get("unit") or quantity.get("code"), 2)
        fasting = collection.get("fastingStatusCodeableConcept")
        set_value(accessor, spm, 15, concept_code(fasting))

        period = collection.get("collectedPeriod") or {}
        start = collection.get("collectedDateTime") or period.get("start")
        set_value(accessor, spm, 17, hl7_ts(state, "Specimen", "collected", start), 1)
        end = hl7_ts(state, "Specimen", "collected", period.get("end"))
        set_value(accessor, spm, 17, end, 2)
        received = hl7_ts(
            state, "Specimen", "receivedTime", resource.get("receivedTime")
        )
        set_value(accessor, spm, 18, received)

        status = resource.get("status")
        set_value(accessor, spm, 20, lookup(SPECIMEN_AVAILABILITY_TO_V2, status))
        condition = first(resource.get("condition"))
        set_cwe(accessor, spm, 21 if status == "unsatisfactory" else 24, condition)

        containers = resource.get("container") or []
        if containers:
            set_cwe(accessor, spm, 27, containers[0].get("type"))
            set_value(accessor, spm, 29, len(containers))
