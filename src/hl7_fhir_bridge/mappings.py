# src/hl7_fhir_bridge/mappings.py
"""
Static code systems and vocabulary maps shared by the converters.

All tables are read-only (MappingProxyType) and safe to share between
concurrent conversions. Lookups never drop an input value: unknown codes come
back unchanged (or as the supplied default) so converters can keep them as raw
codings.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

# ------------------------------------------------------------------------------
# code system URLs
# ------------------------------------------------------------------------------

LOINC = "http://loinc.org"
SNOMED = "http://snomed.info/sct"
ICD10 = "http://hl7.org/fhir/sid/icd-10"
ICD9 = "http://hl7.org/fhir/sid/icd-9-cm"
RXNORM = "http://www.nlm.nih.gov/research/umls/rxnorm"
UCUM = "http://unitsofmeasure.org"
CVX = "http://hl7.org/fhir/sid/cvx"
CPT = "http://www.ama-assn.org/go/cpt"
NDC = "http://hl7.org/fhir/sid/ndc"

V2_0004 = "http://terminology.hl7.org/CodeSystem/v2-0004"
V2_0007 = "http://terminology.hl7.org/CodeSystem/v2-0007"
V2_0063 = "http://terminology.hl7.org/CodeSystem/v2-0063"
V2_0069 = "http://terminology.hl7.org/CodeSystem/v2-0069"
V2_0127 = "http://terminology.hl7.org/CodeSystem/v2-0127"
V2_0131 = "http://terminology.hl7.org/CodeSystem/v2-0131"
V2_0203 = "http://terminology.hl7.org/CodeSystem/v2-0203"
V2_0443 = "http://terminology.hl7.org/CodeSystem/v2-0443"
V3_ACT_CODE = "http://terminology.hl7.org/CodeSystem/v3-ActCode"
V3_MARITAL = "http://terminology.hl7.org/CodeSystem/v3-MaritalStatus"
V3_NULL_FLAVOR = "http://terminology.hl7.org/CodeSystem/v3-NullFlavor"
V3_PARTICIPATION = "http://terminology.hl7.org/CodeSystem/v3-ParticipationType"
V3_INTERPRETATION = (
    "http://terminology.hl7.org/CodeSystem/v3-ObservationInterpretation"
)
V3_DATA_OPERATION = "http://terminology.hl7.org/CodeSystem/v3-DataOperation"
V3_ROLE_CODE = "http://terminology.hl7.org/CodeSystem/v3-RoleCode"
V3_CONFIDENTIALITY = "http://terminology.hl7.org/CodeSystem/v3-Confidentiality"
PROVENANCE_AGENT_TYPE = (
    "http://terminology.hl7.org/CodeSystem/provenance-participant-type"
)
LOCATION_PHYSICAL_TYPE = (
    "http://terminology.hl7.org/CodeSystem/location-physical-type"
)
CONDITION_CLINICAL = "http://terminology.hl7.org/CodeSystem/condition-clinical"
CONDITION_VER_STATUS = "http://terminology.hl7.org/CodeSystem/condition-ver-status"
CONDITION_CATEGORY = "http://terminology.hl7.org/CodeSystem/condition-category"
ALLERGY_CLINICAL = (
    "http://terminology.hl7.org/CodeSystem/allergyintolerance-clinical"
)
ALLERGY_VERIFICATION = (
    "http://terminology.hl7.org/CodeSystem/allergyintolerance-verification"
)
OBSERVATION_CATEGORY = "http://terminology.hl7.org/CodeSystem/observation-category"
DIAGNOSIS_ROLE = "http://terminology.hl7.org/CodeSystem/diagnosis-role"
COVERAGE_CLASS = "http://terminology.hl7.org/CodeSystem/coverage-class"
SUBSCRIBER_RELATIONSHIP = (
    "http://terminology.hl7.org/CodeSystem/subscriber-relationship"
)
DEFAULT_IDENTIFIER_SYSTEM = "urn:oid:2.16.840.1.113883.2.1.4.1"

# extensions
US_CORE_RACE = "http://hl7.org/fhir/us/core/StructureDefinition/us-core-race"
US_CORE_ETHNICITY = (
    "http://hl7.org/fhir/us/core/StructureDefinition/us-core-ethnicity"
)
PATIENT_RELIGION = "http://hl7.org/fhir/StructureDefinition/patient-religion"
ENCOUNTER_REFERENCE = "http://hl7.org/fhir/StructureDefinition/encounter-reference"
RACE_SYSTEM = "urn:oid:2.16.840.1.113883.6.238"
TENANT_TAG_SYSTEM = "http://example.org/tenant-id"
EXT_BASE = "http://example.org/fhir/StructureDefinition"
EXT_Z_SEGMENT = f"{EXT_BASE}/hl7v2-z-segment"
EXT_PET_NAME = f"{EXT_BASE}/patient-pet-name"
EXT_VIP_LEVEL = f"{EXT_BASE}/patient-vip-level"
EXT_ARCHIVE_STATUS = f"{EXT_BASE}/patient-archive-status"
EXT_EQUIPMENT_TYPE = f"{EXT_BASE}/telecom-equipment-type"
NOTE_LOINC = "34109-9"


# ------------------------------------------------------------------------------
# vocabulary maps
# ------------------------------------------------------------------------------

GENDER_V2_TO_FHIR: Mapping[str, str] = MappingProxyType(
    {
        "M": "male",
        "F": "female",
        "O": "other",
        "U": "unknown",
        "A": "other",
        "N": "unknown",
    }
)
GENDER_FHIR_TO_V2: Mapping[str, str] = MappingProxyType(
    {"male": "M", "female": "F", "other": "O", "unknown": "U"}
)

# PV1-2 patient class <-> v3 ActCode
PATIENT_CLASS_TO_FHIR: Mapping[str, Dict[str, str]] = MappingProxyType(
    {
        "I": {"code": "IMP", "display": "inpatient encounter"},
        "O": {"code": "AMB", "display": "ambulatory"},
        "E": {"code": "EMER", "display": "emergency"},
        "P": {"code": "PRENC", "display": "pre-admission"},
        "R": {"code": "AMB", "display": "ambulatory"},
        "B": {"code": "OBSENC", "display": "observation encounter"},
        "C": {"code": "AMB", "display": "ambulatory"},
        "N": {"code": "NONAC", "display": "inpatient non-acute"},
    }
)
PATIENT_CLASS_TO_V2: Mapping[str, str] = MappingProxyType(
    {
        "IMP": "I",
        "ACUTE": "I",
        "NONAC": "I",
        "AMB": "O",
        "EMER": "E",
        "PRENC": "P",
        "OBSENC": "B",
        "inpatient": "I",
        "outpatient": "O",
        "emergency": "E",
    }
)

MARITAL_STATUS: Mapping[str, str] = MappingProxyType(
    {
        "A": "Annulled",
        "D": "Divorced",
        "I": "Interlocutory",
        "L": "Legally Separated",
        "M": "Married",
        "P": "Polygamous",
        "S": "Never Married",
        "T": "Domestic partner",
        "U": "unmarried",
        "W": "Widowed",
    }
)

NAME_USE_TO_FHIR: Mapping[str, str] = MappingProxyType(
    {"L": "official", "M": "maiden", "N": "nickname", "A": "anonymous", "D": "usual"}
)
NAME_USE_TO_V2: Mapping[str, str] = MappingProxyType(
    {v: k for k, v in NAME_USE_TO_FHIR.items()}
)

ADDRESS_USE_TO_FHIR: Mapping[str, str] = MappingProxyType(
    {"H": "home", "M": "home", "O": "work", "B": "work", "C": "temp"}
)
ADDRESS_USE_TO_V2: Mapping[str, str] = MappingProxyType(
    {"home": "H", "work": "O", "temp": "C", "old": "H", "billing": "B"}
)

# XTN-3 telecommunication equipment type
EQUIPMENT_TO_SYSTEM: Mapping[str, str] = MappingProxyType(
    {
        "PH": "phone",
        "CP": "phone",
        "FX": "fax",
        "BP": "pager",
        "Internet": "email",
        "X.400": "email",
        "MD": "other",
    }
)
SYSTEM_TO_EQUIPMENT: Mapping[str, str] = MappingProxyType(
    {"phone": "PH", "fax": "FX", "email": "Internet", "pager": "BP", "url": "Internet"}
)

ALLERGY_CATEGORY: Mapping[str, str] = MappingProxyType(
    {
        "DA": "medication",
        "MA": "medication",
        "FA": "food",
        "EA": "environment",
        "AA": "environment",
        "LA": "environment",
        "PA": "environment",
        "MC": "environment",
    }
)
ALLERGY_CATEGORY_TO_V2: Mapping[str, str] = MappingProxyType(
    {"medication": "DA", "food": "FA", "environment": "EA", "biologic": "DA"}
)
ALLERGY_SEVERITY: Mapping[str, str] = MappingProxyType(
    {"SV": "severe", "MO": "moderate", "MI": "mild"}
)
ALLERGY_SEVERITY_TO_V2: Mapping[str, str] = MappingProxyType(
    {v: k for k, v in ALLERGY_SEVERITY.items()}
)

OBSERVATION_STATUS: Mapping[str, str] = MappingProxyType(
    {
        "F": "final",
        "P": "preliminary",
        "C": "corrected",
        "A": "amended",
        "R": "registered",
        "I": "registered",
        "S": "preliminary",
        "D": "entered-in-error",
        "W": "entered-in-error",
        "X": "cancelled",
    }
)
OBSERVATION_STATUS_TO_V2: Mapping[str, str] = MappingProxyType(
    {
        "final": "F",
        "preliminary": "P",
        "corrected": "C",
        "amended": "C",
        "registered": "R",
        "entered-in-error": "W",
        "cancelled": "X",
    }
)

REPORT_STATUS: Mapping[str, str] = MappingProxyType(
    {
        "F": "final",
        "C": "corrected",
        "A": "amended",
        "P": "preliminary",
        "X": "cancelled",
        "R": "registered",
        "S": "registered",
        "I": "registered",
        "O": "registered",
    }
)
REPORT_STATUS_TO_V2: Mapping[str, str] = MappingProxyType(
    {
        "registered": "O",
        "partial": "P",
        "preliminary": "P",
        "final": "F",
        "amended": "A",
        "corrected": "C",
        "appended": "C",
        "cancelled": "X",
        "entered-in-error": "X",
    }
)

# ORC-5 order status -> ServiceRequest.status
ORDER_STATUS: Mapping[str, str] = MappingProxyType(
    {
        "CM": "completed",
        "IP": "active",
        "A": "active",
        "SC": "on-hold",
        "HD": "on-hold",
        "CA": "revoked",
        "DC": "revoked",
        "ER": "entered-in-error",
    }
)
ORDER_STATUS_TO_V2: Mapping[str, str] = MappingProxyType(
    {
        "active": "IP",
        "completed": "CM",
        "on-hold": "HD",
        "revoked": "CA",
        "entered-in-error": "ER",
    }
)
# CarePlan.status -> ORC-1 order control / ORC-5 order status
CARE_PLAN_ORDER_CONTROL: Mapping[str, str] = MappingProxyType(
    {
        "active": "NW",
        "revoked": "CA",
        "on-hold": "HD",
        "completed": "SC",
        "draft": "SN",
        "entered-in-error": "CA",
    }
)
CARE_PLAN_ORDER_STATUS: Mapping[str, str] = MappingProxyType(
    {
        "active": "IP",
        "completed": "CM",
        "revoked": "CA",
        "on-hold": "HD",
        "draft": "SC",
    }
)
# ORC-1 order controls that cancel the order
CANCEL_ORDER_CONTROLS = frozenset({"CA", "OC", "CR", "DC", "OD"})
SERVICE_REQUEST_STATUS_TO_OBR25: Mapping[str, str] = MappingProxyType(
    {
        "draft": "O",
        "active": "I",
        "completed": "F",
        "revoked": "X",
        "entered-in-error": "X",
    }
)

PRIORITY_TO_FHIR: Mapping[str, str] = MappingProxyType(
    {"S": "stat", "A": "asap", "U": "urgent", "R": "routine", "T": "routine"}
)
PRIORITY_TO_V2: Mapping[str, str] = MappingProxyType(
    {"stat": "S", "asap": "A", "urgent": "U", "routine": "R"}
)

# RXA-20 completion status
ADMIN_STATUS_TO_FHIR: Mapping[str, str] = MappingProxyType(
    {
        "CP": "completed",
        "NA": "not-done",
        "PA": "on-hold",
        "RE": "stopped",
        "IP": "in-progress",
    }
)
ADMIN_STATUS_TO_V2: Mapping[str, str] = MappingProxyType(
    {
        "completed": "CP",
        "in-progress": "IP",
        "not-done": "NA",
        "on-hold": "PA",
        "stopped": "CP",
    }
)
IMMUNIZATION_STATUS_TO_FHIR: Mapping[str, str] = MappingProxyType(
    {"CP": "completed", "NA": "not-done", "PA": "not-done", "RE": "not-done"}
)
IMMUNIZATION_STATUS_TO_V2: Mapping[str, str] = MappingProxyType(
    {"completed": "CP", "not-done": "NA", "entered-in-error": "PA"}
)

APPOINTMENT_STATUS: Mapping[str, str] = MappingProxyType(
    {
        "Booked": "booked",
        "Pending": "proposed",
        "Waitlist": "waitlist",
        "Cancelled": "cancelled",
        "Deleted": "cancelled",
        "Complete": "fulfilled",
        "Noshow": "noshow",
        "Started": "arrived",
    }
)
APPOINTMENT_STATUS_TO_V2: Mapping[str, str] = MappingProxyType(
    {
        "proposed": "Pending",
        "pending": "Pending",
        "booked": "Booked",
        "arrived": "Started",
        "fulfilled": "Complete",
        "cancelled": "Cancelled",
        "noshow": "Noshow",
        "waitlist": "Waitlist",
    }
)

DIAGNOSIS_TYPE: Mapping[str, str] = MappingProxyType(
    {"A": "Admitting", "W": "Working", "F": "Final"}
)
DIAGNOSIS_TYPE_TO_V2: Mapping[str, str] = MappingProxyType(
    {v.lower(): k for k, v in DIAGNOSIS_TYPE.items()}
)

# SPM-20 specimen availability <-> Specimen.status
SPECIMEN_AVAILABILITY: Mapping[str, str] = MappingProxyType(
    {"Y": "available", "A": "available", "N": "unavailable", "U": "unavailable"}
)
SPECIMEN_AVAILABILITY_TO_V2: Mapping[str, str] = MappingProxyType(
    {
        "available": "Y",
        "unavailable": "N",
        "unsatisfactory": "N",
        "entered-in-error": "N",
    }
)

# TXA-17 document completion status -> DocumentReference.docStatus
DOCUMENT_COMPLETION: Mapping[str, str] = MappingProxyType(
    {
        "AU": "final",
        "LA": "amended",
        "DI": "preliminary",
        "DO": "preliminary",
        "IN": "preliminary",
        "IP": "preliminary",
        "PA": "preliminary",
        "CA": "entered-in-error",
    }
)
# TXA-3 document content presentation -> attachment MIME type
CONTENT_PRESENTATION: Mapping[str, str] = MappingProxyType(
    {
        "TX": "text/plain",
        "FT": "text/plain",
        "RTF": "application/rtf",
        "HTML": "text/html",
        "PDF": "application/pdf",
        "CDA": "application/xml",
    }
)
CONFIDENTIALITY_CODES = frozenset({"U", "L", "M", "N", "R", "V"})

# OBX-8 abnormal flags -> v3 ObservationInterpretation display
INTERPRETATION: Mapping[str, str] = MappingProxyType(
    {
        "H": "High",
        "L": "Low",
        "HH": "Critical high",
        "LL": "Critical low",
        "N": "Normal",
        "A": "Abnormal",
        "AA": "Critical abnormal",
        "POS": "Positive",
        "NEG": "Negative",
    }
)

# trigger event -> Encounter.status
ENCOUNTER_STATUS_BY_TRIGGER: Mapping[str, str] = MappingProxyType(
    {"A03": "finished", "A13": "in-progress"}
)

# PV1-7/8/9 practitioner roles (v3 ParticipationType)
PARTICIPANT_FIELDS: Mapping[str, int] = MappingProxyType(
    {"ATND": 7, "REFR": 8, "CON": 9}
)
PARTICIPANT_DISPLAY: Mapping[str, str] = MappingProxyType(
    {"ATND": "attender", "REFR": "referrer", "CON": "consultant", "ADM": "admitter"}
)

# ROL-3 role codes
ROL_ROLE_TO_PV1: Mapping[str, int] = MappingProxyType({"AT": 7, "RP": 8, "CP": 9})
ROL_ROLES = frozenset({"AT", "RP", "CP", "AD", "PP"})

# GT1/IN1 relationship codes (v2-0063) that make a RelatedPerson a guarantor
GUARANTOR_CODES = frozenset({"GT", "GUAR", "guarantor", "SEL", "EMC"})

# code system name used on the wire <-> FHIR system URL
V2_CODING_SYSTEMS: Mapping[str, str] = MappingProxyType(
    {
        "LN": LOINC,
        "LOINC": LOINC,
        "SCT": SNOMED,
        "SNM": SNOMED,
        "I10": ICD10,
        "ICD10": ICD10,
        "I9": ICD9,
        "I9C": ICD9,
        "RXNORM": RXNORM,
        "RXN": RXNORM,
        "CVX": CVX,
        "C4": CPT,
        "CPT": CPT,
        "NDC": NDC,
        "UCUM": UCUM,
    }
)
FHIR_SYSTEM_TO_V2: Mapping[str, str] = MappingProxyType(
    {
        LOINC: "LN",
        SNOMED: "SCT",
        ICD10: "I10",
        ICD9: "I9C",
        RXNORM: "RXNORM",
        CVX: "CVX",
        CPT: "C4",
        NDC: "NDC",
        UCUM: "UCUM",
    }
)


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def lookup(table: Mapping[str, Any], code: Optional[str], default: Any = None) -> Any:
    """
    Look up ``code`` in ``table``.

    Tries an exact match first, then an upper-case match. Returns ``default``
    when nothing matches; callers that must not lose the input pass the raw
    code as the default.
    """
    if code is None:
        return default
    key = str(code).strip()
    if key in table:
        return table[key]
    if key.upper() in table:
        return table[key.upper()]
    return default


def system_for(
    v2_system: Optional[str], default: Optional[str] = None
) -> Optional[str]:
    """Map a v2 coding system name (e.g. ``LN``) to a FHIR system URL."""
    if not v2_system:
        return default
    return lookup(V2_CODING_SYSTEMS, v2_system, default)


def v2_system_for(url: Optional[str]) -> Optional[str]:
    """Map a FHIR system URL back to a v2 coding system name."""
    if not url:
        return None
    if url in FHIR_SYSTEM_TO_V2:
        return FHIR_SYSTEM_TO_V2[url]
    if "cvx" in url.lower():
        return "CVX"
    if url.startswith("urn:oid:"):
        return url[len("urn:oid:"):]
    return None


def coding(
    system: Optional[str], code: Optional[str], display: Optional[str] = None
) -> Dict[str, str]:
    """Build a FHIR Coding dict, leaving out empty parts."""
    out: Dict[str, str] = {}
    if system:
        out["system"] = system
    if code:
        out["code"] = code
    if display:
        out["display"] = display
    return out


def codeable(
    system: Optional[str],
    code: Optional[str],
    display: Optional[str] = None,
    text: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Build a FHIR CodeableConcept dict.

    A value with no code keeps its display as ``text`` so that free-text input
    is preserved. Returns None when there is nothing to carry.
    """
    out: Dict[str, Any] = {}
    if code:
        out["coding"] = [coding(system, code, display)]
    if text or (display and not code):
        out["text"] = text or display
    return out or None
