# src/hl7_fhir_bridge/fhir_parser.py
"""
FHIR parsing utilities.

Provides JSON/XML loaders and dict -> model validation returning
`fhir.resources` R4B model instances for every resource kind the engine reads
or writes. Unknown resource types fall back to the base `Resource` model,
built without validation.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Type

from lxml import etree
from fhir.resources.R4B.allergyintolerance import AllergyIntolerance
from fhir.resources.R4B.appointment import Appointment
from fhir.resources.R4B.bundle import Bundle
from fhir.resources.R4B.careplan import CarePlan
from fhir.resources.R4B.condition import Condition
from fhir.resources.R4B.coverage import Coverage
from fhir.resources.R4B.diagnosticreport import DiagnosticReport
from fhir.resources.R4B.documentreference import DocumentReference
from fhir.resources.R4B.encounter import Encounter
from fhir.resources.R4B.immunization import Immunization
from fhir.resources.R4B.location import Location
from fhir.resources.R4B.medicationadministration import MedicationAdministration
from fhir.resources.R4B.medicationrequest import MedicationRequest
from fhir.resources.R4B.messageheader import MessageHeader
from fhir.resources.R4B.observation import Observation
from fhir.resources.R4B.operationoutcome import OperationOutcome
from fhir.resources.R4B.organization import Organization
from fhir.resources.R4B.patient import Patient
from fhir.resources.R4B.practitioner import Practitioner
from fhir.resources.R4B.procedure import Procedure
from fhir.resources.R4B.provenance import Provenance
from fhir.resources.R4B.relatedperson import RelatedPerson
from fhir.resources.R4B.resource import Resource
from fhir.resources.R4B.servicerequest import ServiceRequest
from pydantic import ValidationError

from .exceptions import ParseError

# Resource classes with first-class parsing.
KNOWN_TYPES: Mapping[str, Type[Resource]] = {
    "AllergyIntolerance": AllergyIntolerance,
    "Appointment": Appointment,
    "Bundle": Bundle,
    "CarePlan": CarePlan,
    "Condition": Condition,
    "Coverage": Coverage,
    "DiagnosticReport": DiagnosticReport,
    "DocumentReference": DocumentReference,
    "Encounter": Encounter,
    "Immunization": Immunization,
    "Location": Location,
    "MedicationAdministration": MedicationAdministration,
    "MedicationRequest": MedicationRequest,
    "MessageHeader": MessageHeader,
    "Observation": Observation,
    "OperationOutcome": OperationOutcome,
    "Organization": Organization,
    "Patient": Patient,
    "Practitioner": Practitioner,
    "Procedure": Procedure,
    "Provenance": Provenance,
    "RelatedPerson": RelatedPerson,
    "ServiceRequest": ServiceRequest,
}

# FHIR XML elements that are always arrays in JSON
_LIST_ELEMENTS = frozenset(
    {
        "identifier",
        "name",
        "given",
        "prefix",
        "suffix",
        "line",
        "telecom",
        "address",
        "contact",
        "extension",
        "coding",
        "entry",
        "tag",
        "participant",
        "category",
        "note",
        "reasonCode",
        "basedOn",
        "result",
        "performer",
        "reaction",
        "manifestation",
        "payor",
        "relationship",
        "issue",
        "dosageInstruction",
        "target",
        "agent",
        "contained",
    }
)

# Elements whose single child is a whole resource
_RESOURCE_WRAPPERS = frozenset({"resource", "contained"})


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _ensure_file(path: Path) -> None:
    """Validate that a path exists and is a file; raise ParseError if not."""
    if not isinstance(path, Path):
        raise ParseError(f"path must be pathlib.Path, got {type(path).__name__}")
    if not path.exists():
        raise ParseError(f"file does not exist: {path}")
    if not path.is_file():
        raise ParseError(f"not a file: {path}")


def _local(tag: str) -> str:
    """Return the local (namespace-stripped) tag name."""
    return tag.split("}", 1)[1] if "}" in tag else tag


def _xml_to_obj(elem: Any) -> Any:
    """
    Convert a FHIR XML element subtree into a JSON-like object.

    Rules
    -----
    - An element with a 'value' attribute and no element children becomes
      that scalar.
    - Otherwise, child elements become dict entries; repeated tags and tags
      that are arrays in FHIR JSON become lists.
    - The 'url' attribute (extensions) is kept; other attributes are ignored.
    - Namespaces are stripped; only local names are used.
    - A resource wrapped in <resource> or <contained> becomes an object with
      "resourceType" set to the wrapped element name.
    """
    children = [c for c in elem if isinstance(c.tag, str)]
    val = elem.get("value")
    if val is not None and not children:
        return val

    out: Dict[str, Any] = {}
    if elem.get("url") is not None:
        out["url"] = elem.get("url")
    for child in children:
        name = _local(child.tag)
        if name in _RESOURCE_WRAPPERS:
            child_obj = _wrapped_resource(child)
        else:
            child_obj = _xml_to_obj(child)
        if name in out:
            if not isinstance(out[name], list):
                out[name] = [out[name]]
            out[name].append(child_obj)
        elif name in _LIST_ELEMENTS:
            out[name] = [child_obj]
        else:
            out[name] = child_obj
    return out


def _wrapped_resource(elem: Any) -> Any:
    inner = [c for c in elem if isinstance(c.tag, str)]
    if len(inner) != 1:
        return _xml_to_obj(elem)
    body = _xml_to_obj(inner[0])
    out: Dict[str, Any] = {"resourceType": _local(inner[0].tag)}
    if isinstance(body, dict):
        out.update(body)
    return out


def _ensure_resource_type_attr(res: Resource, expected: Optional[str]) -> None:
    """
    Ensure an unvalidated base Resource exposes the original type name.

    Known classes report their type through get_resource_type(); a base
    Resource built for an unknown type would report "Resource" instead.
    """
    if not expected or getattr(res, "resource_type", None) == expected:
        return
    object.__setattr__(res, "resource_type", expected)


def resource_type_of(resource: Any) -> Optional[str]:
    """
    Return the FHIR resource type name of a model instance or JSON mapping.

    Returns
    -------
    str or None
        e.g. "Patient"; None for mappings without a resourceType.
    """
    if isinstance(resource, Mapping):
        rtype = resource.get("resourceType")
        return str(rtype) if rtype else None
    rtype = getattr(resource, "resource_type", None)
    if isinstance(rtype, str) and rtype:
        return rtype
    getter = getattr(resource, "get_resource_type", None)
    if callable(getter):
        return str(getter())
    return type(resource).__name__


def resource_to_json(resource: Any, pretty: bool = False) -> str:
    """
    Serialize a FHIR model (or plain mapping) to JSON text.

    Raises
    ------
    ParseError
        If the object cannot be serialized.
    """
    indent = 2 if pretty else None
    if isinstance(resource, Mapping):
        return json.dumps(resource, indent=indent)
    mdj = getattr(resource, "model_dump_json", None)
    if not callable(mdj):
        raise ParseError(
            f"cannot serialize {type(resource).__name__} as FHIR JSON"
        )
    try:
        return str(mdj(indent=indent, by_alias=True, exclude_none=True))
    except (TypeError, ValueError) as e:
        raise ParseError(f"failed to serialize FHIR resource: {e}") from e


def parse_fhir_json(text: str) -> Dict[str, Any]:
    """
    Parse FHIR JSON text into a plain dict.

    Raises
    ------
    TypeError
        If text is not a string.
    ParseError
        If the JSON is invalid or the top level is not an object.
    """
    if not isinstance(text, str):
        raise TypeError(f"text must be str, got {type(text).__name__}")
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ParseError("FHIR JSON must be an object at the top level")
    return obj


def build_resource(data: Mapping[str, Any]) -> Resource:
    """
    Build a FHIR model from a JSON-like mapping.

    Parameters
    ----------
    data : Mapping
        Resource content including "resourceType".

    Returns
    -------
    Resource
        A validated instance of the concrete class for known types (see
        KNOWN_TYPES). Unknown types are built as a base Resource WITHOUT
        validation, keeping the original "resourceType".

    Raises
    ------
    ParseError
        If model validation fails for a known type.
    """
    rtype = data.get("resourceType")
    cls = KNOWN_TYPES.get(str(rtype))

    if cls is not None:
        try:
            return cls(**data)
        except ValidationError as e:
            raise ParseError(f"FHIR {rtype} validation error: {e}") from e
        except (TypeError, ValueError) as e:
            raise ParseError(f"failed to build FHIR {rtype} model: {e}") from e

    fields = {k: v for k, v in data.items() if k != "resourceType"}
    res = Resource.model_construct(**fields)
    _ensure_resource_type_attr(res, str(rtype) if rtype else None)
    return res


# ------------------------------------------------------------------------------
# file loaders
# ------------------------------------------------------------------------------


def load_fhir_json(path: Path) -> Resource:
    """
    Load a FHIR resource from a JSON file.

    Parameters
    ----------
    path : Path
        Path to a JSON file containing a FHIR resource.

    Returns
    -------
    Resource
        See build_resource.

    Raises
    ------
    ParseError
        If the path is invalid, the JSON is not valid, the file does not
        contain a JSON object, or model validation fails for known types.
    """
    _ensure_file(path)

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ParseError(f"failed to read JSON: {e}") from e

    return build_resource(parse_fhir_json(text))


def load_fhir_xml(path: Path) -> Resource:
    """
    Load a FHIR resource from an XML file.

    Parameters
    ----------
    path : Path
        Path to an XML file containing a FHIR resource.

    Returns
    -------
    Resource
        The resource parsed from the XML content. The root element's local
        name becomes 'resourceType'; children are converted with the rules in
        _xml_to_obj, then validated as in build_resource.

    Raises
    ------
    ParseError
        If the path is invalid, the XML cannot be parsed, or model validation fails.
    """
    _ensure_file(path)

    try:
        tree = etree.parse(str(path))
        root = tree.getroot()
    except (etree.XMLSyntaxError, OSError) as e:
        raise ParseError(f"invalid XML: {e}") from e

    body = _xml_to_obj(root)
    data: Dict[str, Any] = {"resourceType": _local(root.tag)}
    if isinstance(body, dict):
        data.update(body)
    return build_resource(data)
