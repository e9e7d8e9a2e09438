# src/hl7_fhir_bridge/detection.py
"""
Message-type detection.

Outbound (FHIR -> HL7): choose the HL7 message structure from bundle content.
Inbound (HL7 -> FHIR): read the message type and trigger event from MSH-9 and
derive trigger-dependent values such as Encounter.status.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .accessor import FieldAccessor
from .mappings import ENCOUNTER_STATUS_BY_TRIGGER

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

DEFAULT_MESSAGE_TYPE = "ADT"

# message type -> (trigger event, message structure)
MESSAGE_STRUCTURES: Mapping[str, Tuple[str, str]] = MappingProxyType(
    {
        "ADT": ("A01", "ADT_A01"),
        "ORM": ("O01", "ORM_O01"),
        "ORU": ("R01", "ORU_R01"),
        "SIU": ("S12", "SIU_S12"),
        "MDM": ("T02", "MDM_T02"),
    }
)

# (substrings, message type), checked in order against the MessageHeader event
_EVENT_PATTERNS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("ADT",), "ADT"),
    (("ORM", "O01"), "ORM"),
    (("ORU", "R01"), "ORU"),
    (("SIU", "S12"), "SIU"),
    (("MDM", "T02"), "MDM"),
)

# (resource types, message type), checked in order when no header decides
_CONTENT_PRECEDENCE: Tuple[Tuple[frozenset, str], ...] = (
    (frozenset({"DiagnosticReport"}), "ORU"),
    (frozenset({"DocumentReference"}), "MDM"),
    (frozenset({"Appointment"}), "SIU"),
    (frozenset({"ServiceRequest", "MedicationRequest", "CarePlan"}), "ORM"),
    (frozenset({"Patient", "Encounter"}), "ADT"),
)


# ------------------------------------------------------------------------------
# outbound
# ------------------------------------------------------------------------------


def _entry_resources(bundle: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    out: List[Mapping[str, Any]] = []
    entries = bundle.get("entry") or []
    if not isinstance(entries, list):
        return out
    for entry in entries:
        if isinstance(entry, Mapping) and isinstance(entry.get("resource"), Mapping):
            out.append(entry["resource"])
    return out


def _header_event(resources: Iterable[Mapping[str, Any]]) -> Optional[str]:
    for res in resources:
        if res.get("resourceType") != "MessageHeader":
            continue
        event = res.get("eventCoding") or {}
        code = event.get("code") if isinstance(event, Mapping) else None
        if code:
            return str(code).upper()
    return None


def detect_message_type(bundle: Mapping[str, Any]) -> str:
    """
    Choose the outbound HL7 message type for a FHIR bundle.

    Parameters
    ----------
    bundle : Mapping
        Bundle JSON as a dict.

    Returns
    -------
    str
        One of "ADT", "ORM", "ORU", "SIU", "MDM".

    Notes
    -----
    First matching rule wins:
    1. A MessageHeader event code, matched by substring against ADT, ORM/O01,
       ORU/R01, SIU/S12, MDM/T02.
    2. Resource content with fixed precedence: DiagnosticReport -> ORU,
       DocumentReference -> MDM, Appointment -> SIU, ServiceRequest,
       MedicationRequest or CarePlan -> ORM, Patient or Encounter -> ADT.
    3. ADT.
    """
    resources = _entry_resources(bundle)

    event = _header_event(resources)
    if event:
        for needles, mtype in _EVENT_PATTERNS:
            if any(n in event for n in needles):
                return mtype

    present = {str(r.get("resourceType")) for r in resources}
    for types, mtype in _CONTENT_PRECEDENCE:
        if present & types:
            return mtype
    return DEFAULT_MESSAGE_TYPE


def message_structure(message_type: str) -> Tuple[str, str]:
    """Return (trigger event, structure id) for an outbound message type."""
    default = MESSAGE_STRUCTURES[DEFAULT_MESSAGE_TYPE]
    return MESSAGE_STRUCTURES.get(message_type, default)


# ------------------------------------------------------------------------------
# inbound
# ------------------------------------------------------------------------------


def extract_message_type(accessor: FieldAccessor) -> Optional[str]:
    """MSH-9-1, or the prefix of an ``ADT_A01``-style MSH-9-1."""
    code = accessor.get("MSH-9-1")
    if code and "_" in code:
        return code.split("_", 1)[0]
    return code


def extract_trigger_event(accessor: FieldAccessor) -> Optional[str]:
    """MSH-9-2, or the suffix of an ``ADT_A01``-style MSH-9-1."""
    trigger = accessor.get("MSH-9-2")
    if trigger:
        return trigger.upper()
    code = accessor.get("MSH-9-1")
    if code and "_" in code:
        return code.split("_", 1)[1].upper() or None
    return None


def encounter_status_for_trigger(trigger: Optional[str]) -> str:
    """
    Encounter.status implied by an inbound trigger event.

    A03 (discharge) -> finished; admit/transfer/update triggers -> in-progress;
    anything unrecognized -> in-progress.
    """
    if not trigger:
        return "in-progress"
    return ENCOUNTER_STATUS_BY_TRIGGER.get(trigger.strip().upper(), "in-progress")
