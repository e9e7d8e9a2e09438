# src/hl7_fhir_bridge/transform/v2_to_fhir/_common.py
"""
Shared helpers for HL7 v2 -> FHIR converters.

Covers the bounded repeating-segment scan, required-field checks, date
conversion with field-level warnings, and builders for the common v2 data
types (CWE/CE, XPN, XCN, XAD, XTN, CX) as FHIR JSON dicts.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type, Union

from fhir.resources.R4B.resource import Resource

from ...accessor import FieldAccessor, FieldPath, SegmentHandle
from ...context import ConversionContext, new_id, sanitize_id
from ...datetime_utils import (
    hl7_to_fhir_date,
    hl7_to_fhir_datetime,
    hl7_to_fhir_instant,
)
from ...exceptions import TransformError
from ...mappings import (
    ADDRESS_USE_TO_FHIR,
    EQUIPMENT_TO_SYSTEM,
    EXT_EQUIPMENT_TYPE,
    NAME_USE_TO_FHIR,
    V2_0203,
    lookup,
    system_for,
)

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)

# Hard cap on segment and field repetitions scanned by one converter.
MAX_REPETITIONS = 50

Built = Union[None, Resource, Iterable[Resource]]


class MappingError(TransformError):
    """A present segment lacks the field that identifies it."""


# ------------------------------------------------------------------------------
# scanning
# ------------------------------------------------------------------------------


def scan_segments(
    accessor: FieldAccessor,
    segment: str,
    context: ConversionContext,
    build: Callable[[SegmentHandle, int], Built],
) -> List[Resource]:
    """
    Convert each occurrence of a repeating segment, in order.

    Occurrences are visited in document order, root and nested alike. The
    scan starts at repetition 0 and ends after the last occurrence, at
    MAX_REPETITIONS, or at the first occurrence whose conversion raises.
    A raising occurrence is recorded as one SEGMENT_ERROR; resources built
    from earlier occurrences are kept.

    Parameters
    ----------
    accessor : FieldAccessor
    segment : str
        Segment name, e.g. "AL1".
    context : ConversionContext
    build : callable
        ``build(handle, index)`` returning a resource, an iterable of
        resources, or None.

    Returns
    -------
    List[Resource]
    """
    out: List[Resource] = []
    handles = accessor.segments(segment)
    for index, handle in enumerate(handles[:MAX_REPETITIONS]):
        try:
            produced = build(handle, index)
        except Exception as exc:  # recorded, scan stops here
            context.record_segment_error(
                segment,
                index,
                f"Failed to convert {segment} repetition {index}: {exc}",
                field=getattr(exc, "field", None),
                exc=exc,
            )
            return out
        if produced is None:
            continue
        if isinstance(produced, Resource):
            out.append(produced)
        else:
            out.extend(produced)

    if len(handles) > MAX_REPETITIONS:
        context.record_warning(
            f"{segment} scan stopped after {MAX_REPETITIONS} repetitions",
            segment=segment,
            index=MAX_REPETITIONS,
        )
    return out


def require(
    accessor: FieldAccessor, path: FieldPath, label: Optional[str] = None
) -> str:
    """
    Return the value at path or raise MappingError naming the field.
    """
    value = accessor.get(path)
    if value is None:
        label = label or f"{path.segment}-{path.field}"
        raise MappingError(
            f"required field {label} is missing",
            segment=path.segment,
            index=path.index,
            field=label,
        )
    return value


def make(cls: Type[Resource], payload: Dict[str, Any]) -> Resource:
    """Validate a resource payload (pydantic errors propagate to the scan)."""
    return cls(**prune(payload))


def prune(value: Any) -> Any:
    """Drop None, empty strings, empty lists and empty dicts recursively."""
    if isinstance(value, dict):
        out = {k: prune(v) for k, v in value.items()}
        return {k: v for k, v in out.items() if v not in (None, "", [], {})}
    if isinstance(value, list):
        items = [prune(v) for v in value]
        return [v for v in items if v not in (None, "", [], {})]
    return value


# ------------------------------------------------------------------------------
# field readers
# ------------------------------------------------------------------------------


def value(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field: int,
    component: Optional[int] = None,
    subcomponent: Optional[int] = None,
    repetition: int = 0,
) -> Optional[str]:
    return accessor.get(handle.path(field, component, subcomponent, repetition))


def repetitions(
    accessor: FieldAccessor, handle: SegmentHandle, field: int
) -> range:
    """Indices of the repetitions of a field, capped at MAX_REPETITIONS."""
    return range(min(accessor.count_repetitions(handle.path(field)), MAX_REPETITIONS))


def fhir_datetime(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field: int,
    context: ConversionContext,
    component: Optional[int] = None,
) -> Optional[str]:
    """HL7 TS -> FHIR dateTime; an invalid value is a FIELD_ERROR warning."""
    raw = value(accessor, handle, field, component)
    if raw is None:
        return None
    try:
        return hl7_to_fhir_datetime(raw)
    except ValueError as e:
        context.record_field_warning(
            handle.name, handle.index, _label(handle, field, component), str(e)
        )
        return None


def fhir_date(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field: int,
    context: ConversionContext,
    component: Optional[int] = None,
) -> Optional[str]:
    """HL7 TS/DT -> FHIR date; an invalid value is a FIELD_ERROR warning."""
    raw = value(accessor, handle, field, component)
    if raw is None:
        return None
    try:
        return hl7_to_fhir_date(raw)
    except ValueError as e:
        context.record_field_warning(
            handle.name, handle.index, _label(handle, field, component), str(e)
        )
        return None


def fhir_instant(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field: int,
    context: ConversionContext,
    component: Optional[int] = None,
) -> Optional[str]:
    """HL7 TS -> FHIR instant; an invalid value is a FIELD_ERROR warning."""
    raw = value(accessor, handle, field, component)
    if raw is None:
        return None
    try:
        return hl7_to_fhir_instant(raw)
    except ValueError as e:
        context.record_field_warning(
            handle.name, handle.index, _label(handle, field, component), str(e)
        )
        return None


def decimal_or_none(text: Optional[str]) -> Optional[Decimal]:
    if text is None:
        return None
    try:
        return Decimal(text.strip())
    except InvalidOperation:
        return None


def _label(handle: SegmentHandle, field: int, component: Optional[int] = None) -> str:
    out = f"{handle.name}-{field}"
    return out + (f"-{component}" if component else "")


# ------------------------------------------------------------------------------
# data type builders
# ------------------------------------------------------------------------------


def codeable_concept(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field: int,
    *,
    default_system: Optional[str] = None,
    repetition: int = 0,
) -> Optional[Dict[str, Any]]:
    """
    CWE/CE -> CodeableConcept.

    Components 1-3 give code, display and coding system; the alternate
    triplet (4-6) becomes a second coding. Unknown coding systems keep the
    code without a system; text-only values become ``text``.
    """
    code = value(accessor, handle, field, 1, repetition=repetition)
    display = value(accessor, handle, field, 2, repetition=repetition)
    sys_name = value(accessor, handle, field, 3, repetition=repetition)
    out: Dict[str, Any] = {}
    codings: List[Dict[str, str]] = []
    if code:
        codings.append(
            prune(
                {
                    "system": system_for(sys_name, default_system),
                    "code": code,
                    "display": display,
                }
            )
        )
    alt_code = value(accessor, handle, field, 4, repetition=repetition)
    if alt_code:
        codings.append(
            prune(
                {
                    "system": system_for(
                        value(accessor, handle, field, 6, repetition=repetition)
                    ),
                    "code": alt_code,
                    "display": value(accessor, handle, field, 5, repetition=repetition),
                }
            )
        )
    if codings:
        out["coding"] = codings
    if display or (not code and value(accessor, handle, field, repetition=repetition)):
        out["text"] = display or value(accessor, handle, field, repetition=repetition)
    return out or None


def human_name(
    accessor: FieldAccessor, handle: SegmentHandle, field: int, repetition: int = 0
) -> Optional[Dict[str, Any]]:
    """XPN -> HumanName (family^given^middle^suffix^prefix^degree^use)."""

    def _c(n: int) -> Optional[str]:
        return value(accessor, handle, field, n, repetition=repetition)

    family, given, middle = _c(1), _c(2), _c(3)
    if not (family or given or middle):
        return None
    name: Dict[str, Any] = {
        "family": family,
        "given": [g for g in (given, middle) if g],
        "suffix": [_c(4)] if _c(4) else None,
        "prefix": [_c(5)] if _c(5) else None,
        "use": lookup(NAME_USE_TO_FHIR, _c(7)),
    }
    return prune(name)


def xcn_name(
    accessor: FieldAccessor, handle: SegmentHandle, field: int, repetition: int = 0
) -> Optional[Dict[str, Any]]:
    """XCN -> HumanName (id^family^given^middle^suffix^prefix)."""

    def _c(n: int) -> Optional[str]:
        return value(accessor, handle, field, n, repetition=repetition)

    family, given, middle = _c(2), _c(3), _c(4)
    if not (family or given):
        return None
    return prune(
        {
            "family": family,
            "given": [g for g in (given, middle) if g],
            "suffix": [_c(5)] if _c(5) else None,
            "prefix": [_c(6)] if _c(6) else None,
        }
    )


def display_name(name: Optional[Dict[str, Any]]) -> Optional[str]:
    if not name:
        return None
    parts = list(name.get("prefix") or []) + list(name.get("given") or [])
    if name.get("family"):
        parts.append(name["family"])
    return " ".join(parts) or None


def practitioner_id(xcn_id: str) -> str:
    """Deterministic Practitioner id for an XCN-1 identifier."""
    return sanitize_id(f"practitioner-{xcn_id}")


def practitioner_reference(
    accessor: FieldAccessor, handle: SegmentHandle, field: int, repetition: int = 0
) -> Optional[Dict[str, str]]:
    """
    XCN -> Reference to ``Practitioner/practitioner-<id>`` with a display.

    Without an id only the display is kept.
    """
    xcn_id = value(accessor, handle, field, 1, repetition=repetition)
    display = display_name(xcn_name(accessor, handle, field, repetition))
    if not xcn_id and not display:
        return None
    return prune(
        {
            "reference": f"Practitioner/{practitioner_id(xcn_id)}" if xcn_id else None,
            "display": display,
        }
    )


def address(
    accessor: FieldAccessor, handle: SegmentHandle, field: int, repetition: int = 0
) -> Optional[Dict[str, Any]]:
    """XAD -> Address (street^other^city^state^zip^country^type)."""

    def _c(n: int) -> Optional[str]:
        return value(accessor, handle, field, n, repetition=repetition)

    street, other = _c(1), _c(2)
    out = prune(
        {
            "line": [s for s in (street, other) if s],
            "city": _c(3),
            "state": _c(4),
            "postalCode": _c(5),
            "country": _c(6),
            "use": lookup(ADDRESS_USE_TO_FHIR, _c(7)),
        }
    )
    return out or None


def contact_point(
    accessor: FieldAccessor,
    handle: SegmentHandle,
    field: int,
    repetition: int = 0,
    *,
    use: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    XTN -> ContactPoint.

    Number from component 1 (or 4 for e-mail, 6/7 for area/local); system
    from the equipment type in component 3; CP becomes use=mobile. The raw
    equipment type is kept in an extension.
    """

    def _c(n: int) -> Optional[str]:
        return value(accessor, handle, field, n, repetition=repetition)

    equipment = _c(3)
    number = _c(1) or _c(4)
    if not number and (_c(6) or _c(7)):
        number = "".join(p for p in (_c(6), _c(7)) if p)
    if not number:
        return None
    system = lookup(EQUIPMENT_TO_SYSTEM, equipment)
    if system is None:
        system = "email" if "@" in number else "phone"
    point: Dict[str, Any] = {
        "system": system,
        "value": number,
        "use": "mobile" if equipment == "CP" else use,
    }
    if equipment:
        point["extension"] = [{"url": EXT_EQUIPMENT_TYPE, "valueCode": equipment}]
    return prune(point)


def identifier(
    value_: Optional[str],
    system: Optional[str] = None,
    type_code: Optional[str] = None,
    type_system: Optional[str] = None,
    use: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    if not value_:
        return None
    ident: Dict[str, Any] = {"value": value_, "system": system, "use": use}
    if type_code:
        ident["type"] = {"coding": [prune({"system": type_system, "code": type_code})]}
    return prune(ident)


def fresh_id() -> str:
    return new_id()


# ------------------------------------------------------------------------------
# segment relationships
# ------------------------------------------------------------------------------

# Segments that open a new order or administration block.
_BLOCK_STARTS = frozenset({"ORC", "OBR", "RXO", "RXE", "RXA", "SCH"})


def following(
    accessor: FieldAccessor, name: str, handle: SegmentHandle
) -> Optional[SegmentHandle]:
    """
    First ``name`` segment after ``handle`` and before the next block start.

    Used for detail segments that need not be adjacent, e.g. RXR after RXE
    with RXC or NTE in between.
    """
    for other in accessor.segments()[handle.position + 1 :]:
        if other.name == name:
            return other
        if other.name in _BLOCK_STARTS:
            return None
    return None


def document_for(
    accessor: FieldAccessor, obx: SegmentHandle
) -> Optional[SegmentHandle]:
    """The TXA whose document body holds ``obx``, or None for a result OBX."""
    txa = accessor.preceding("TXA", obx)
    if txa is None:
        return None
    obr = accessor.preceding("OBR", obx)
    if obr is not None and obr.position > txa.position:
        return None
    return txa


def order_numbers(
    accessor: FieldAccessor, orc: Optional[SegmentHandle]
) -> Tuple[Optional[str], Optional[str]]:
    """(placer, filler) order numbers from ORC-2 / ORC-3."""
    if orc is None:
        return None, None
    return value(accessor, orc, 2), value(accessor, orc, 3)


def order_identifiers(
    placer: Optional[str], filler: Optional[str]
) -> List[Dict[str, Any]]:
    """PLAC / FILL identifiers typed with v2-0203."""
    out = []
    for number, code in ((placer, "PLAC"), (filler, "FILL")):
        ident = identifier(number, type_code=code, type_system=V2_0203)
        if ident:
            out.append(ident)
    return out


def is_vaccine(accessor: FieldAccessor, rxa: SegmentHandle) -> bool:
    """True when RXA-5 is coded in CVX (an immunization, not a drug)."""
    return (value(accessor, rxa, 5, 3) or "").upper() == "CVX"
