# src/hl7_fhir_bridge/transform/fhir_to_v2/patient.py
"""
Patient -> PID, PD1, NK1 and Z segments.

Notes
-----
- The MR / official identifier is written first in PID-3.
- Work and e-mail contact points go to PID-14 (business phone); everything
  else to PID-13 (home phone).
- Pet name, VIP level and archive status extensions become one ZPI segment;
  raw Z-segment extensions are re-emitted verbatim.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from ...accessor import FieldAccessor, SegmentHandle
from ...mappings import (
    EXT_ARCHIVE_STATUS,
    EXT_PET_NAME,
    EXT_VIP_LEVEL,
    EXT_Z_SEGMENT,
    GENDER_FHIR_TO_V2,
    PATIENT_RELIGION,
    US_CORE_ETHNICITY,
    US_CORE_RACE,
    lookup,
)
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    concept_code,
    first_coding,
    hl7_dt,
    hl7_ts,
    set_cwe,
    set_value,
    set_xad,
    set_xcn,
    set_xpn,
    set_xtn,
)

_ZPI_FIELDS = {EXT_PET_NAME: 1, EXT_VIP_LEVEL: 2, EXT_ARCHIVE_STATUS: 3}


@register_resource_converter("Patient")
class PatientToPid(ResourceConverterBase):
    """Patient -> PID (+ PD1, NK1, ZPI and raw Z segments)."""

    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        set_id = accessor.next_set_id("PID")
        pid = accessor.add_segment("PID")
        set_value(accessor, pid, 1, set_id)

        for rep, ident in enumerate(_ordered_identifiers(resource.get("identifier"))):
            _set_cx(accessor, pid, ident, rep)
        for rep, name in enumerate(resource.get("name") or []):
            set_xpn(accessor, pid, 5, name, rep)

        birth = hl7_dt(state, "Patient", "birthDate", resource.get("birthDate"))
        set_value(accessor, pid, 7, birth)
        gender = lookup(GENDER_FHIR_TO_V2, resource.get("gender"), "U")
        set_value(accessor, pid, 8, gender)

        for rep, addr in enumerate(resource.get("address") or []):
            set_xad(accessor, pid, 11, addr, rep)
        self._telecom(accessor, pid, resource.get("telecom") or [])

        set_cwe(accessor, pid, 16, resource.get("maritalStatus"))
        _set_extensions(accessor, pid, resource.get("extension") or [])

        if resource.get("deceasedDateTime"):
            when = hl7_ts(
                state, "Patient", "deceasedDateTime", resource["deceasedDateTime"]
            )
            set_value(accessor, pid, 29, when)
            set_value(accessor, pid, 30, "Y")
        elif resource.get("deceasedBoolean") is True:
            set_value(accessor, pid, 30, "Y")

        practitioners = resource.get("generalPractitioner") or []
        if practitioners:
            pd1 = accessor.add_segment("PD1")
            set_xcn(accessor, pd1, 4, practitioners[0], state)

        for contact in resource.get("contact") or []:
            write_nk1(accessor, contact)
        _write_z_segments(accessor, resource.get("extension") or [])

    @staticmethod
    def _telecom(
        accessor: FieldAccessor, pid: SegmentHandle, points: List[Json]
    ) -> None:
        home: List[Json] = []
        work: List[Json] = []
        for point in points:
            if point.get("use") == "work" or point.get("system") == "email":
                work.append(point)
            else:
                home.append(point)
        for rep, point in enumerate(home):
            set_xtn(accessor, pid, 13, point, rep)
        for rep, point in enumerate(work):
            set_xtn(accessor, pid, 14, point, rep)


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _ordered_identifiers(identifiers: Optional[List[Json]]) -> List[Json]:
    items = [i for i in identifiers or [] if isinstance(i, Mapping) and i.get("value")]

    def _rank(ident: Json) -> int:
        if concept_code(ident.get("type")) == "MR" or ident.get("use") == "official":
            return 0
        return 1

    return sorted(items, key=_rank)


def _set_cx(accessor: FieldAccessor, pid: SegmentHandle, ident: Json, rep: int) -> None:
    """Identifier -> CX (id^^^authority^type)."""
    set_value(accessor, pid, 3, ident["value"], 1, rep)
    system = str(ident.get("system") or "")
    if system.startswith("urn:oid:"):
        set_value(accessor, pid, 3, system[len("urn:oid:"):], 4, rep)
    elif ident.get("assigner", {}).get("display"):
        set_value(accessor, pid, 3, ident["assigner"]["display"], 4, rep)
    set_value(accessor, pid, 3, concept_code(ident.get("type")), 5, rep)


def _omb(extension: Json) -> Dict[str, Any]:
    """Pull the ombCategory coding (or text) out of a US Core extension."""
    out: Dict[str, Any] = {}
    for sub in extension.get("extension") or []:
        if sub.get("url") == "ombCategory":
            out.update(sub.get("valueCoding") or {})
        elif sub.get("url") == "text" and not out.get("display"):
            out["display"] = sub.get("valueString")
    return out


def _set_extensions(
    accessor: FieldAccessor, pid: SegmentHandle, extensions: List[Json]
) -> None:
    for ext in extensions:
        url = ext.get("url")
        if url in (US_CORE_RACE, US_CORE_ETHNICITY):
            field_no = 10 if url == US_CORE_RACE else 22
            coding = _omb(ext)
            set_value(accessor, pid, field_no, coding.get("code"), 1)
            set_value(accessor, pid, field_no, coding.get("display"), 2)
            if coding.get("code"):
                set_value(accessor, pid, field_no, "CDCREC", 3)
        elif url == PATIENT_RELIGION:
            set_cwe(accessor, pid, 17, ext.get("valueCodeableConcept"))


def write_nk1(accessor: FieldAccessor, contact: Json) -> None:
    """Patient.contact shaped mapping (single name and address) -> NK1."""
    set_id = accessor.next_set_id("NK1")
    nk1 = accessor.add_segment("NK1")
    set_value(accessor, nk1, 1, set_id)
    set_xpn(accessor, nk1, 2, contact.get("name"))
    relationships = contact.get("relationship") or []
    if relationships:
        coding = first_coding(relationships[0])
        set_value(accessor, nk1, 3, coding.get("code"), 1)
        display = coding.get("display") or relationships[0].get("text")
        set_value(accessor, nk1, 3, display, 2)
    set_xad(accessor, nk1, 4, contact.get("address"))
    home = work = 0
    for point in contact.get("telecom") or []:
        if point.get("use") == "work":
            set_xtn(accessor, nk1, 6, point, work)
            work += 1
        else:
            set_xtn(accessor, nk1, 5, point, home)
            home += 1


def _write_z_segments(accessor: FieldAccessor, extensions: List[Json]) -> None:
    zpi: Dict[int, str] = {}
    for ext in extensions:
        url = ext.get("url")
        if url in _ZPI_FIELDS and ext.get("valueString"):
            zpi[_ZPI_FIELDS[url]] = ext["valueString"]
    if zpi:
        seg = accessor.add_segment("ZPI")
        for field_no, text in sorted(zpi.items()):
            set_value(accessor, seg, field_no, text)
    for ext in extensions:
        raw = str(ext.get("valueString", ""))
        if ext.get("url") == EXT_Z_SEGMENT and raw.startswith("Z"):
            accessor.append_er7(raw)
