# src/hl7_fhir_bridge/transform/fhir_to_v2/_common.py
"""
Shared state and writers for FHIR -> HL7 v2 converters.

Converters receive plain FHIR JSON mappings (``resource_to_json`` output or
the caller's own JSON) and write segments through a FieldAccessor. The
helpers here turn the common FHIR data types (CodeableConcept, HumanName,
Address, ContactPoint, Reference) into v2 components.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ...accessor import FieldAccessor, SegmentHandle
from ...config import AppConfig
from ...datetime_utils import fhir_to_hl7_date, fhir_to_hl7_datetime
from ...mappings import (
    ADDRESS_USE_TO_V2,
    NAME_USE_TO_V2,
    SYSTEM_TO_EQUIPMENT,
    lookup,
    v2_system_for,
)
from ...results import FIELD_ERROR, ConversionError

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)

Json = Mapping[str, Any]


@dataclass
class OutboundState:
    """
    Per-call state for one FHIR -> HL7 conversion.

    Attributes
    ----------
    message_type : str
        Detected outbound type ("ADT", "ORM", "ORU", "SIU", "MDM").
    config : AppConfig
    resources_by_ref : dict
        ``"Type/id"`` -> resource JSON for every bundle entry.
    report_results : set of str
        Observation references listed by a DiagnosticReport; those
        Observations are written by the report converter, under their OBR.
    entry_index : int
        Position of the entry being converted.
    warnings : list of ConversionError
    """

    message_type: str
    config: AppConfig = field(default_factory=AppConfig)
    resources_by_ref: Dict[str, Json] = field(default_factory=dict)
    report_results: Set[str] = field(default_factory=set)
    entry_index: int = 0
    warnings: List[ConversionError] = field(default_factory=list)

    @classmethod
    def for_resources(
        cls,
        message_type: str,
        resources: Iterable[Json],
        config: Optional[AppConfig] = None,
    ) -> "OutboundState":
        state = cls(message_type=message_type, config=config or AppConfig())
        for res in resources:
            rtype, rid = res.get("resourceType"), res.get("id")
            if rtype and rid:
                state.resources_by_ref[f"{rtype}/{rid}"] = res
            if rtype == "DiagnosticReport":
                for ref in res.get("result") or []:
                    if isinstance(ref, Mapping) and ref.get("reference"):
                        state.report_results.add(ref["reference"])
        return state

    def resolve(self, reference: Optional[Json]) -> Optional[Json]:
        """Return the bundle resource a Reference points at, or None."""
        if not isinstance(reference, Mapping):
            return None
        ref = reference.get("reference")
        if not ref:
            return None
        return self.resources_by_ref.get(ref) or self.resources_by_ref.get(
            "/".join(str(ref).split("/")[-2:])
        )

    def warn(self, resource_type: str, field_name: str, message: str) -> None:
        warn = ConversionError.warning(
            message,
            code=FIELD_ERROR,
            segment=resource_type,
            index=self.entry_index,
            field=field_name,
        )
        LOG.debug("%s", warn)
        self.warnings.append(warn)


# ------------------------------------------------------------------------------
# readers
# ------------------------------------------------------------------------------


def first(items: Any) -> Any:
    """First element of a list, the value itself for non-lists, else None."""
    if isinstance(items, list):
        return items[0] if items else None
    return items


def first_coding(concept: Optional[Json]) -> Dict[str, Any]:
    if not isinstance(concept, Mapping):
        return {}
    return dict(first(concept.get("coding")) or {})


def concept_code(concept: Optional[Json]) -> Optional[str]:
    return first_coding(concept).get("code") or None


def reference_id(reference: Optional[Json]) -> Optional[str]:
    """``"Practitioner/abc"`` -> ``"abc"``."""
    if not isinstance(reference, Mapping) or not reference.get("reference"):
        return None
    return str(reference["reference"]).rstrip("/").split("/")[-1]


def first_identifier(resource: Json) -> Optional[str]:
    ident = first(resource.get("identifier"))
    return ident.get("value") if isinstance(ident, Mapping) else None


def identifier_by_type(identifiers: Optional[List[Json]], code: str) -> Optional[str]:
    for ident in identifiers or []:
        if concept_code(ident.get("type")) == code:
            return ident.get("value")
    return None


def hl7_ts(
    state: OutboundState, rtype: str, name: str, text: Optional[str]
) -> Optional[str]:
    """FHIR date/dateTime -> HL7 TS; an unreadable value becomes a warning."""
    if not text:
        return None
    try:
        return fhir_to_hl7_datetime(text)
    except (TypeError, ValueError) as e:
        state.warn(rtype, name, str(e))
        return None


def hl7_dt(
    state: OutboundState, rtype: str, name: str, text: Optional[str]
) -> Optional[str]:
    """FHIR date -> HL7 DT; an unreadable value becomes a warning."""
    if not text:
        return None
    try:
        return fhir_to_hl7_date(text)
    except (TypeError, ValueError) as e:
        state.warn(rtype, name, str(e))
        return None


def number_text(value: Any) -> Optional[str]:
    """Render a JSON number without a trailing ``.0`` for integral values."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ------------------------------------------------------------------------------
# writers
# ------------------------------------------------------------------------------


def set_value(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field_no: int,
    value: Any,
    component: Optional[int] = None,
    repetition: int = 0,
) -> None:
    if value is None:
        return
    accessor.set(handle.path(field_no, component, repetition=repetition), str(value))


def set_cwe(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field_no: int,
    concept: Optional[Json],
    repetition: int = 0,
    *,
    with_system: bool = True,
) -> bool:
    """
    CodeableConcept -> CWE (code^text^system).

    A text-only concept writes its text into component 2. Returns True when
    anything was written.
    """
    if not isinstance(concept, Mapping):
        return False
    coding = first_coding(concept)
    code = coding.get("code")
    text = coding.get("display") or concept.get("text")
    if not code and not text:
        return False
    set_value(accessor, handle, field_no, code, 1, repetition)
    set_value(accessor, handle, field_no, text, 2, repetition)
    if with_system and code:
        system = v2_system_for(coding.get("system"))
        set_value(accessor, handle, field_no, system, 3, repetition)
    return True


def set_xpn(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field_no: int,
    name: Optional[Json],
    repetition: int = 0,
) -> None:
    """HumanName -> XPN (family^given^middle^suffix^prefix^^use)."""
    if not isinstance(name, Mapping):
        return
    given = list(name.get("given") or [])
    set_value(accessor, handle, field_no, name.get("family"), 1, repetition)
    set_value(accessor, handle, field_no, given[0] if given else None, 2, repetition)
    set_value(accessor, handle, field_no, " ".join(given[1:]) or None, 3, repetition)
    set_value(accessor, handle, field_no, first(name.get("suffix")), 4, repetition)
    set_value(accessor, handle, field_no, first(name.get("prefix")), 5, repetition)
    use = lookup(NAME_USE_TO_V2, name.get("use"))
    set_value(accessor, handle, field_no, use, 7, repetition)
    if not (name.get("family") or given) and name.get("text"):
        set_value(accessor, handle, field_no, name["text"], 1, repetition)


def set_xad(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field_no: int,
    address: Optional[Json],
    repetition: int = 0,
) -> None:
    """Address -> XAD (street^other^city^state^zip^country^type)."""
    if not isinstance(address, Mapping):
        return
    lines = list(address.get("line") or [])
    set_value(accessor, handle, field_no, lines[0] if lines else None, 1, repetition)
    set_value(accessor, handle, field_no, ", ".join(lines[1:]) or None, 2, repetition)
    set_value(accessor, handle, field_no, address.get("city"), 3, repetition)
    set_value(accessor, handle, field_no, address.get("state"), 4, repetition)
    set_value(accessor, handle, field_no, address.get("postalCode"), 5, repetition)
    set_value(accessor, handle, field_no, address.get("country"), 6, repetition)
    use = lookup(ADDRESS_USE_TO_V2, address.get("use"))
    set_value(accessor, handle, field_no, use, 7, repetition)


def set_xtn(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field_no: int,
    point: Optional[Json],
    repetition: int = 0,
) -> None:
    """ContactPoint -> XTN (number^use^equipment^email)."""
    if not isinstance(point, Mapping) or not point.get("value"):
        return
    system = point.get("system")
    if point.get("use") == "mobile":
        equipment = "CP"
    else:
        equipment = lookup(SYSTEM_TO_EQUIPMENT, system, "PH")
    if system == "email":
        set_value(accessor, handle, field_no, "NET", 2, repetition)
        set_value(accessor, handle, field_no, equipment, 3, repetition)
        set_value(accessor, handle, field_no, point["value"], 4, repetition)
        return
    set_value(accessor, handle, field_no, point["value"], 1, repetition)
    use = "WPN" if point.get("use") == "work" else "PRN"
    set_value(accessor, handle, field_no, use, 2, repetition)
    set_value(accessor, handle, field_no, equipment, 3, repetition)


def split_display(display: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """``"John Smith"`` -> (family "Smith", given "John")."""
    if not display:
        return None, None
    parts = display.split()
    if len(parts) == 1:
        return parts[0], None
    return parts[-1], " ".join(parts[:-1])


def set_xcn(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field_no: int,
    reference: Optional[Json],
    state: OutboundState,
    repetition: int = 0,
    *,
    unique: bool = False,
) -> bool:
    """
    Reference to a Practitioner -> XCN (id^family^given^middle^suffix^prefix).

    The name comes from the referenced Practitioner when it is in the bundle,
    else from the reference display. The id drops the ``practitioner-``
    prefix used for inbound ids. With ``unique``, nothing is written when a
    repetition already carries the same id.
    """
    if not isinstance(reference, Mapping):
        return False
    target = state.resolve(reference)
    xcn_id = None
    if target is not None:
        xcn_id = first(target.get("identifier") or [{}]).get("value")
    if not xcn_id:
        rid = reference_id(reference)
        if rid and rid.startswith("practitioner-"):
            rid = rid[len("practitioner-"):]
        xcn_id = rid
    name = first(target.get("name")) if target is not None else None
    if isinstance(name, Mapping):
        family = name.get("family")
        given = list(name.get("given") or [])
        suffix, prefix = first(name.get("suffix")), first(name.get("prefix"))
    else:
        family, given_one = split_display(reference.get("display"))
        given = [given_one] if given_one else []
        suffix = prefix = None
    if not (xcn_id or family or given):
        return False
    if unique and xcn_id:
        for rep in range(accessor.count_repetitions(handle.path(field_no))):
            if accessor.get(handle.path(field_no, 1, repetition=rep)) == xcn_id:
                return False
    set_value(accessor, handle, field_no, xcn_id, 1, repetition)
    set_value(accessor, handle, field_no, family, 2, repetition)
    set_value(accessor, handle, field_no, given[0] if given else None, 3, repetition)
    set_value(accessor, handle, field_no, " ".join(given[1:]) or None, 4, repetition)
    set_value(accessor, handle, field_no, suffix, 5, repetition)
    set_value(accessor, handle, field_no, prefix, 6, repetition)
    return True


def segment_for(accessor: FieldAccessor, name: str) -> SegmentHandle:
    """First root ``name`` segment, created when missing."""
    existing = accessor.get_segment(name)
    return existing if existing is not None else accessor.add_segment(name)


class ResourceConverterBase:
    """can_convert() shared by every FHIR -> HL7 converter."""

    resource_types: Tuple[str, ...] = ()

    def can_convert(self, resource: Json) -> bool:
        return (
            isinstance(resource, Mapping)
            and resource.get("resourceType") in self.resource_types
        )


def order_numbers(resource: Json) -> Tuple[Optional[str], Optional[str]]:
    """(placer, filler) from PLAC / FILL identifiers, else the first as placer."""
    identifiers = resource.get("identifier") or []
    placer = identifier_by_type(identifiers, "PLAC")
    filler = identifier_by_type(identifiers, "FILL")
    if placer is None and filler is None and identifiers:
        placer = identifiers[0].get("value")
    return placer, filler


def write_orc(
    accessor: FieldAccessor,
    resource: Json,
    state: OutboundState,
    control: str = "NW",
    status: Optional[str] = None,
) -> SegmentHandle:
    """Common order segment for MedicationRequest and ServiceRequest."""
    rtype = str(resource.get("resourceType"))
    placer, filler = order_numbers(resource)
    orc = accessor.add_segment("ORC")
    set_value(accessor, orc, 1, control)
    set_value(accessor, orc, 2, placer)
    set_value(accessor, orc, 3, filler)
    set_value(accessor, orc, 5, status)
    authored = hl7_ts(state, rtype, "authoredOn", resource.get("authoredOn"))
    set_value(accessor, orc, 9, authored)
    set_xcn(accessor, orc, 12, resource.get("requester"), state)
    return orc
