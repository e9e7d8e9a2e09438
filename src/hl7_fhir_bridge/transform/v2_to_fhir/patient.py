# src/hl7_fhir_bridge/transform/v2_to_fhir/patient.py
"""
PID / PD1 / NK1 / Z-segments -> Patient.

Notes
-----
- Only the first PID is converted; its id becomes ``context.patient_id``.
- Identifier systems come from PID-3-4 as ``urn:oid:<authority>``.
- Race, ethnicity and religion are carried as extensions.
- ZPI (pet name, VIP level, archive status) maps to dedicated extensions;
  any other Z segment is kept verbatim in a raw-segment extension.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fhir.resources.R4B.patient import Patient

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ...mappings import (
    DEFAULT_IDENTIFIER_SYSTEM,
    EXT_ARCHIVE_STATUS,
    EXT_PET_NAME,
    EXT_VIP_LEVEL,
    EXT_Z_SEGMENT,
    GENDER_V2_TO_FHIR,
    MARITAL_STATUS,
    PATIENT_RELIGION,
    RACE_SYSTEM,
    US_CORE_ETHNICITY,
    US_CORE_RACE,
    V2_0063,
    V2_0131,
    V2_0203,
    V3_MARITAL,
    codeable,
    lookup,
)
from ...results import REQUIRED_FIELD_MISSING
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    MAX_REPETITIONS,
    address,
    codeable_concept,
    contact_point,
    fhir_date,
    fhir_datetime,
    fresh_id,
    human_name,
    identifier,
    make,
    practitioner_reference,
    repetitions,
    value,
)

LOG = logging.getLogger(__name__)

# ZPI field -> extension url
_ZPI_FIELDS = ((1, EXT_PET_NAME), (2, EXT_VIP_LEVEL), (3, EXT_ARCHIVE_STATUS))


@register("patient")
class PatientConverter:
    """PID (with PD1, NK1 and Z segments) -> one Patient."""

    concept = "patient"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        pids = accessor.segments("PID")
        if not pids:
            context.record_segment_error(
                "PID",
                0,
                "PID segment is missing; no Patient produced",
                code=REQUIRED_FIELD_MISSING,
            )
            return []
        pid = pids[0]

        try:
            patient = self._build_patient(accessor, pid, context)
        except Exception as exc:  # recorded; no Patient
            context.record_segment_error(
                "PID", 0, f"Failed to convert PID: {exc}", exc=exc,
                field=getattr(exc, "field", None),
            )
            return []

        context.patient_id = patient.id
        LOG.debug("Patient %s built from PID", patient.id)
        return [patient]

    # --------------------------------------------------------------------------
    # internal helpers
    # --------------------------------------------------------------------------

    def _build_patient(
        self, accessor: FieldAccessor, pid: SegmentHandle, context: ConversionContext
    ) -> Patient:
        payload: Dict[str, Any] = {
            "resourceType": "Patient",
            "id": fresh_id(),
            "identifier": _identifiers(accessor, pid),
            "name": [
                human_name(accessor, pid, 5, r) for r in repetitions(accessor, pid, 5)
            ],
            "birthDate": fhir_date(accessor, pid, 7, context),
            "gender": _gender(value(accessor, pid, 8)),
            "address": [
                address(accessor, pid, 11, r) for r in repetitions(accessor, pid, 11)
            ],
            "telecom": _telecom(accessor, pid, 13, "home")
            + _telecom(accessor, pid, 14, "work"),
            "maritalStatus": _marital_status(value(accessor, pid, 16)),
            "extension": _pid_extensions(accessor, pid),
        }

        deceased_at = fhir_datetime(accessor, pid, 29, context)
        if deceased_at:
            payload["deceasedDateTime"] = deceased_at
        elif (value(accessor, pid, 30) or "").upper() == "Y":
            payload["deceasedBoolean"] = True

        pd1 = accessor.segments("PD1")
        if pd1:
            gp = practitioner_reference(accessor, pd1[0], 4)
            if gp:
                payload["generalPractitioner"] = [gp]

        contacts = accessor.segments("NK1")[:MAX_REPETITIONS]
        payload["contact"] = [_contact(accessor, nk1) for nk1 in contacts]
        payload["extension"] += _z_extensions(accessor)
        return make(Patient, payload)


# ------------------------------------------------------------------------------
# PID field helpers
# ------------------------------------------------------------------------------


def _identifiers(accessor: FieldAccessor, pid: SegmentHandle) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for rep in repetitions(accessor, pid, 3):
        id_value = value(accessor, pid, 3, 1, repetition=rep)
        authority = value(accessor, pid, 3, 4, repetition=rep)
        id_type = value(accessor, pid, 3, 5, repetition=rep)
        ident = identifier(
            id_value,
            system=f"urn:oid:{authority}" if authority else DEFAULT_IDENTIFIER_SYSTEM,
            type_code=id_type,
            type_system=V2_0203,
            use="official" if id_type == "MR" else None,
        )
        if ident:
            out.append(ident)
    return out


def _gender(code: Optional[str]) -> str:
    if code is None:
        return "unknown"
    return lookup(GENDER_V2_TO_FHIR, code, "unknown")


def _marital_status(code: Optional[str]) -> Optional[Dict[str, Any]]:
    if not code:
        return None
    return codeable(V3_MARITAL, code, lookup(MARITAL_STATUS, code))


def _telecom(
    accessor: FieldAccessor, handle: SegmentHandle, field: int, use: str
) -> List[Dict[str, Any]]:
    points = (
        contact_point(accessor, handle, field, r, use=use)
        for r in repetitions(accessor, handle, field)
    )
    return [p for p in points if p]


def _omb_extension(
    url: str, code: Optional[str], display: Optional[str]
) -> Optional[Dict[str, Any]]:
    if not code and not display:
        return None
    parts: List[Dict[str, Any]] = []
    if code:
        coding = {"system": RACE_SYSTEM, "code": code}
        if display:
            coding["display"] = display
        parts.append({"url": "ombCategory", "valueCoding": coding})
    parts.append({"url": "text", "valueString": display or code})
    return {"url": url, "extension": parts}


def _pid_extensions(
    accessor: FieldAccessor, pid: SegmentHandle
) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    race = _omb_extension(
        US_CORE_RACE, value(accessor, pid, 10, 1), value(accessor, pid, 10, 2)
    )
    if race:
        out.append(race)
    ethnicity = _omb_extension(
        US_CORE_ETHNICITY, value(accessor, pid, 22, 1), value(accessor, pid, 22, 2)
    )
    if ethnicity:
        out.append(ethnicity)
    religion = codeable_concept(accessor, pid, 17)
    if religion:
        out.append({"url": PATIENT_RELIGION, "valueCodeableConcept": religion})
    return out


# ------------------------------------------------------------------------------
# NK1 and Z segments
# ------------------------------------------------------------------------------


def _contact(accessor: FieldAccessor, nk1: SegmentHandle) -> Dict[str, Any]:
    relationship: List[Dict[str, Any]] = []
    rel = codeable(V2_0063, value(accessor, nk1, 3, 1), value(accessor, nk1, 3, 2))
    if rel:
        relationship.append(rel)
    role = codeable(V2_0131, value(accessor, nk1, 7, 1), value(accessor, nk1, 7, 2))
    if role:
        relationship.append(role)
    phones = _telecom(accessor, nk1, 5, "home") + _telecom(accessor, nk1, 6, "work")
    return {
        "name": human_name(accessor, nk1, 2),
        "relationship": relationship,
        "address": address(accessor, nk1, 4),
        "telecom": phones,
    }


def _z_extensions(accessor: FieldAccessor) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for handle in accessor.segments():
        if not handle.name.startswith("Z"):
            continue
        if handle.name == "ZPI":
            for field, url in _ZPI_FIELDS:
                text = value(accessor, handle, field)
                if text:
                    out.append({"url": url, "valueString": text})
            continue
        out.append({"url": EXT_Z_SEGMENT, "valueString": accessor.segment_text(handle)})
    return out
