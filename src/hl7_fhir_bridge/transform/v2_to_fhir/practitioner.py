# src/hl7_fhir_bridge/transform/v2_to_fhir/practitioner.py
"""
XCN fields -> Practitioner.

Every distinct provider id found in the fields below becomes one
Practitioner with the deterministic id ``practitioner-<id>``. Other
converters reference that id before this converter runs, so the ids must
match ``_common.practitioner_id``. Providers without an id are kept only as
reference displays.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from fhir.resources.R4B.practitioner import Practitioner

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    MAX_REPETITIONS,
    identifier,
    make,
    practitioner_id,
    repetitions,
    value,
    xcn_name,
)

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)

# (segment, field) pairs holding XCN providers, scanned in this order
PROVIDER_FIELDS: Tuple[Tuple[str, int], ...] = (
    ("PD1", 4),
    ("PV1", 7),
    ("PV1", 8),
    ("PV1", 9),
    ("PV1", 17),
    ("PV1", 52),
    ("ORC", 12),
    ("OBR", 16),
    ("OBX", 16),
    ("PR1", 11),
    ("PR1", 12),
    ("RXA", 10),
    ("SCH", 16),
)

_OID_RE = re.compile(r"^[0-9]+(\.[0-9]+)+$")


@register("practitioner")
class PractitionerConverter:
    """Deduplicated Practitioners for every identified XCN provider."""

    concept = "practitioner"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        seen = {getattr(r, "id", None) for r in bundle.of_type("Practitioner")}
        out: List[Practitioner] = []
        for segment, field in PROVIDER_FIELDS:
            for handle in accessor.segments(segment)[:MAX_REPETITIONS]:
                for rep in repetitions(accessor, handle, field):
                    xcn_id = value(accessor, handle, field, 1, repetition=rep)
                    if not xcn_id or practitioner_id(xcn_id) in seen:
                        continue
                    try:
                        practitioner = _build_practitioner(
                            accessor, handle, field, rep, xcn_id
                        )
                    except Exception as exc:  # recorded; next provider
                        context.record_segment_error(
                            segment,
                            handle.index,
                            f"Failed to convert provider in {segment}-{field}: {exc}",
                            field=f"{segment}-{field}",
                            exc=exc,
                        )
                        continue
                    seen.add(practitioner.id)
                    out.append(practitioner)
        LOG.debug("Built %d practitioner(s)", len(out))
        return out


def _identifier_system(authority: Optional[str]) -> Optional[str]:
    if not authority:
        return None
    if _OID_RE.match(authority):
        return f"urn:oid:{authority}"
    if ":" in authority:
        return authority
    return None


def _build_practitioner(
    accessor: FieldAccessor, handle: SegmentHandle, field: int, rep: int, xcn_id: str
) -> Practitioner:
    authority = value(accessor, handle, field, 9, repetition=rep)
    ident = identifier(xcn_id, system=_identifier_system(authority))
    if ident and authority and "system" not in ident:
        ident["assigner"] = {"display": authority}
    payload: Dict[str, Any] = {
        "resourceType": "Practitioner",
        "id": practitioner_id(xcn_id),
        "active": True,
        "identifier": [ident],
        "name": [xcn_name(accessor, handle, field, rep)],
    }
    return make(Practitioner, payload)
