# src/hl7_fhir_bridge/transform/fhir_to_v2/care_plan.py
"""
CarePlan -> ORC.

Notes
-----
- CarePlan.status picks ORC-1 (order control) and ORC-5 (order status);
  an unknown status sends a new order (NW) with no ORC-5.
- Without PLAC / FILL identifiers the resource id becomes the placer number.
- period start / end fill ORC-7 components 4 and 5 (TQ start / end).
- The first Practitioner contributor is the ordering provider (ORC-12); the
  first Organization contributor names ORC-17 and ORC-21.
- The first activity's detail code is written as ORC-16.
"""

from __future__ import annotations

from typing import Optional

from ...accessor import FieldAccessor
from ...mappings import CARE_PLAN_ORDER_CONTROL, CARE_PLAN_ORDER_STATUS, lookup
from ..registry import register_resource_converter
from ._common import (
    Json,
    OutboundState,
    ResourceConverterBase,
    first,
    hl7_ts,
    set_cwe,
    set_value,
    set_xcn,
    write_orc,
)


def _contributor(resource: Json, rtype: str) -> Optional[Json]:
    for ref in resource.get("contributor") or []:
        if str(ref.get("reference") or "").startswith(f"{rtype}/"):
            return ref
    return None


@register_resource_converter("CarePlan")
class CarePlanToOrc(ResourceConverterBase):
    def convert(
        self, resource: Json, accessor: FieldAccessor, state: OutboundState
    ) -> None:
        status = resource.get("status")
        orc = write_orc(
            accessor,
            resource,
            state,
            control=lookup(CARE_PLAN_ORDER_CONTROL, status, "NW"),
            status=lookup(CARE_PLAN_ORDER_STATUS, status),
        )
        if accessor.get(orc.path(2)) is None and accessor.get(orc.path(3)) is None:
            set_value(accessor, orc, 2, resource.get("id"))

        period = resource.get("period") or {}
        start = hl7_ts(state, "CarePlan", "period", period.get("start"))
        end = hl7_ts(state, "CarePlan", "period", period.get("end"))
        set_value(accessor, orc, 7, start, 4)
        set_value(accessor, orc, 7, end, 5)
        created = hl7_ts(state, "CarePlan", "created", resource.get("created"))
        set_value(accessor, orc, 9, created)
        set_xcn(accessor, orc, 10, resource.get("author"), state)
        set_xcn(accessor, orc, 12, _contributor(resource, "Practitioner"), state)

        activity = first(resource.get("activity")) or {}
        set_cwe(accessor, orc, 16, (activity.get("detail") or {}).get("code"))

        organization = _contributor(resource, "Organization") or {}
        set_value(accessor, orc, 17, organization.get("display"), 1)
        set_value(accessor, orc, 21, organization.get("display"), 1)
