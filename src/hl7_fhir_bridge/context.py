# src/hl7_fhir_bridge/context.py
"""
Per-conversion state: the conversion context and the bundle in progress.

A ConversionContext is created once per top-level conversion call, passed to
every converter in invocation order, and discarded when the call returns. It
is never shared between messages or tenants, so it needs no locking.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from fhir.resources.R4B.bundle import Bundle
from fhir.resources.R4B.resource import Resource

from .accessor import FieldAccessor
from .fhir_parser import resource_to_json, resource_type_of
from .mappings import TENANT_TAG_SYSTEM
from .results import (
    SEGMENT_ERROR,
    WARNING,
    ConversionError,
)

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)

_FHIR_ID_RE = re.compile(r"^[A-Za-z0-9\-.]{1,64}$")
_FHIR_ID_BAD = re.compile(r"[^A-Za-z0-9\-.]")


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def new_id() -> str:
    """Return a fresh resource id."""
    return str(uuid.uuid4())


def is_fhir_id(value: Optional[str]) -> bool:
    return bool(value) and bool(_FHIR_ID_RE.match(str(value)))


def sanitize_id(value: str) -> str:
    """
    Coerce value into a valid FHIR id (``[A-Za-z0-9-.]{1,64}``).

    Invalid characters become ``-``; the result is truncated to 64 characters.
    """
    cleaned = _FHIR_ID_BAD.sub("-", str(value).strip())[:64]
    return cleaned or new_id()


def placer_key(order_number: str) -> str:
    return f"PLACER:{order_number}"


def filler_key(order_number: str) -> str:
    return f"FILLER:{order_number}"


def index_key(scope: str, ordinal: int) -> str:
    return f"INDEX:{scope}:{ordinal}"


@dataclass(frozen=True)
class ResourceRef:
    """Reference to a resource produced in the current conversion."""

    resource_type: str
    id: str
    display: Optional[str] = None

    @property
    def reference(self) -> str:
        return f"{self.resource_type}/{self.id}"

    def as_reference(self) -> Dict[str, str]:
        out = {"reference": self.reference}
        if self.display:
            out["display"] = self.display
        return out


# ------------------------------------------------------------------------------
# context
# ------------------------------------------------------------------------------


@dataclass
class ConversionContext:
    """
    Mutable state for one HL7 -> FHIR conversion.

    Attributes
    ----------
    accessor : FieldAccessor
        Handle on the parsed message (also used for Z-segment inspection).
    transaction_id : str
        MSH-10 or a generated id; also the Bundle id.
    tenant_id : str or None
        Tenant passed explicitly by the caller; stamped on the output.
    message_type, trigger_event : str or None
        MSH-9-1 and MSH-9-2.
    message_time : str or None
        MSH-7 as a FHIR dateTime.
    patient_id, encounter_id, location_id : str or None
        Ids of the resources produced for PID, PV1 and PV1-3.
    link_index : dict
        LinkKey -> ResourceRefs registered under it (``PLACER:<n>``, ``FILLER:<n>``,
        ``INDEX:<scope>:<n>``).
    observations_by_order : dict
        OBR occurrence index -> Observation references under that OBR.
    errors, warnings : list of ConversionError
    """

    accessor: FieldAccessor
    transaction_id: str
    tenant_id: Optional[str] = None
    message_type: Optional[str] = None
    trigger_event: Optional[str] = None
    message_time: Optional[str] = None
    patient_id: Optional[str] = None
    encounter_id: Optional[str] = None
    location_id: Optional[str] = None
    link_index: Dict[str, List[ResourceRef]] = field(default_factory=dict)
    observations_by_order: Dict[int, List[str]] = field(default_factory=dict)
    errors: List[ConversionError] = field(default_factory=list)
    warnings: List[ConversionError] = field(default_factory=list)

    # --------------------------------------------------------------------------
    # references
    # --------------------------------------------------------------------------

    def patient_reference(self) -> Optional[Dict[str, str]]:
        if not self.patient_id:
            return None
        return {"reference": f"Patient/{self.patient_id}"}

    def encounter_reference(self) -> Optional[Dict[str, str]]:
        if not self.encounter_id:
            return None
        return {"reference": f"Encounter/{self.encounter_id}"}

    # --------------------------------------------------------------------------
    # linking
    # --------------------------------------------------------------------------

    def register_link(
        self,
        ref: ResourceRef,
        *,
        placer: Optional[str] = None,
        filler: Optional[str] = None,
        ordinal: Optional[int] = None,
    ) -> None:
        """Register an order-like resource under its placer/filler/index keys."""
        keys: List[str] = []
        if placer:
            keys.append(placer_key(placer))
        if filler:
            keys.append(filler_key(filler))
        if ordinal is not None:
            keys.append(index_key(ref.resource_type, ordinal))
        for key in keys:
            self.link_index.setdefault(key, []).append(ref)

    def resolve_link(
        self,
        resource_type: str,
        *,
        placer: Optional[str] = None,
        filler: Optional[str] = None,
        ordinal: Optional[int] = None,
    ) -> Optional[ResourceRef]:
        """
        Find the order-like resource of ``resource_type`` for a fulfillment.

        Tries the filler key, then the placer key, then the index key.
        """
        keys: List[str] = []
        if filler:
            keys.append(filler_key(filler))
        if placer:
            keys.append(placer_key(placer))
        if ordinal is not None:
            keys.append(index_key(resource_type, ordinal))
        for key in keys:
            for ref in self.link_index.get(key, ()):
                if ref.resource_type == resource_type:
                    return ref
        return None

    # --------------------------------------------------------------------------
    # error recording
    # --------------------------------------------------------------------------

    def record_segment_error(
        self,
        segment: str,
        index: Optional[int],
        message: str,
        *,
        field: Optional[str] = None,
        exc: Optional[BaseException] = None,
        code: str = SEGMENT_ERROR,
    ) -> ConversionError:
        err = ConversionError.segment_error(
            segment, index, message, field=field, code=code, exc=exc
        )
        LOG.warning("%s", err)
        self.errors.append(err)
        return err

    def record_field_warning(
        self, segment: str, index: Optional[int], field: str, message: str
    ) -> ConversionError:
        warn = ConversionError.field_error(segment, index, field, message)
        LOG.debug("%s", warn)
        self.warnings.append(warn)
        return warn

    def record_warning(
        self,
        message: str,
        *,
        code: str = WARNING,
        segment: Optional[str] = None,
        index: Optional[int] = None,
        field: Optional[str] = None,
    ) -> ConversionError:
        warn = ConversionError.warning(
            message, code=code, segment=segment, index=index, field=field
        )
        LOG.debug("%s", warn)
        self.warnings.append(warn)
        return warn


# ------------------------------------------------------------------------------
# bundle in progress
# ------------------------------------------------------------------------------


class BundleBuilder:
    """
    Ordered collection of the resources produced so far.

    Converters add secondary artifacts (Location, payor Organization,
    Practitioner) here directly; the orchestrator adds each converter's
    returned resources.
    """

    def __init__(self) -> None:
        self._entries: List[Resource] = []

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, resource: Resource) -> ResourceRef:
        rtype = resource_type_of(resource)
        rid = getattr(resource, "id", None)
        if not rtype or not rid:
            raise ValueError("bundle entries need a resource type and an id")
        self._entries.append(resource)
        return ResourceRef(rtype, str(rid))

    def resources(self) -> List[Resource]:
        return list(self._entries)

    def of_type(self, resource_type: str) -> List[Resource]:
        return [r for r in self._entries if resource_type_of(r) == resource_type]

    def contains(self, resource_type: str, resource_id: str) -> bool:
        return any(
            resource_type_of(r) == resource_type
            and getattr(r, "id", None) == resource_id
            for r in self._entries
        )

    def find(self, predicate: Callable[[Resource], bool]) -> Optional[Resource]:
        return next((r for r in self._entries if predicate(r)), None)

    def references(self) -> List[str]:
        return [f"{resource_type_of(r)}/{r.id}" for r in self._entries]

    def build(self, bundle_id: str, tenant_id: Optional[str] = None) -> Bundle:
        """
        Assemble a validated transaction Bundle.

        Every entry gets ``request.method = POST`` with the resource type as
        URL. When tenant_id is given it is stamped as a meta tag on the Bundle
        and on every entry.
        """
        tag = {"system": TENANT_TAG_SYSTEM, "code": tenant_id} if tenant_id else None
        entries: List[Dict[str, Any]] = []
        for res in self._entries:
            rtype = resource_type_of(res)
            data: Dict[str, Any] = json.loads(resource_to_json(res))
            data.setdefault("resourceType", rtype)
            if tag is not None:
                meta = data.setdefault("meta", {})
                meta.setdefault("tag", []).append(dict(tag))
            entries.append(
                {
                    "fullUrl": f"{rtype}/{data['id']}",
                    "resource": data,
                    "request": {"method": "POST", "url": rtype},
                }
            )
        payload: Dict[str, Any] = {
            "resourceType": "Bundle",
            "id": bundle_id,
            "type": "transaction",
        }
        if entries:
            payload["entry"] = entries
        if tag is not None:
            payload["meta"] = {"tag": [dict(tag)]}
        return Bundle(**payload)
