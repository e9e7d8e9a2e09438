# src/hl7_fhir_bridge/transform/fhir_to_v2/practitioner.py
"""
Practitioner -> ROL (and PV1-7/8/9 for attending, referring and consulting).

The role comes from a ``meta.tag`` code (AT, RP, CP, AD); untagged
practitioners are written as primary care providers (PP).
"""

from __future__ import annotations

from typing import Optional

from ...accessor import FieldAccessor
from ...mappings import ROL_ROLE_TO_PV1, ROL_ROLES
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    concept_code,
    first,
    first_identifier,
    segment_for,
    set_value,
    set_xad,
    set_xcn,
    set_xtn,
)

DEFAULT_ROLE = "PP"


def rol_role(resource: Json) -> str:
    for tag in (resource.get("meta") or {}).get("tag") or []:
        code = str(tag.get("code") or "").upper()
        if code in ROL_ROLES:
            return code
    return DEFAULT_ROLE


@register_resource_converter("Practitioner")
class PractitionerToRol(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        reference = {"reference": f"Practitioner/{resource.get('id')}"}
        role = rol_role(resource)

        rol = accessor.add_segment("ROL")
        ident: Optional[str] = first_identifier(resource)
        set_value(accessor, rol, 1, ident or resource.get("id"))
        set_value(accessor, rol, 2, "AD")
        set_value(accessor, rol, 3, role, 1)
        set_value(accessor, rol, 3, "HL70443", 3)
        set_xcn(accessor, rol, 4, reference, state)

        qualification = first(resource.get("qualification"))
        if qualification:
            set_value(accessor, rol, 9, concept_code(qualification.get("code")))
        set_xad(accessor, rol, 11, first(resource.get("address")))
        set_xtn(accessor, rol, 12, first(resource.get("telecom")))

        field_no = ROL_ROLE_TO_PV1.get(role)
        if field_no is not None:
            pv1 = segment_for(accessor, "PV1")
            rep = accessor.count_repetitions(pv1.path(field_no))
            set_xcn(accessor, pv1, field_no, reference, state, rep, unique=True)
