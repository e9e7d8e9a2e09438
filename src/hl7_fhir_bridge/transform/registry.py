# src/hl7_fhir_bridge/transform/registry.py
"""
Registries for both conversion directions.

Provides:
- @register(concept) binding HL7 -> FHIR converter classes to a concept name,
- the fixed HL7 -> FHIR invocation order,
- @register_resource_converter(*types) for FHIR -> HL7 converter classes,
- a read-only capability table (resource type -> converters), built once.
"""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Type

from .base import ResourceConverter, SegmentConverter

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

# Invocation order; later concepts link to resources produced earlier.
CONVERSION_ORDER: Tuple[str, ...] = (
    "patient",
    "encounter",
    "observation",
    "condition",
    "allergy",
    "medication_request",
    "medication_administration",
    "practitioner",
    "procedure",
    "service_request",
    "specimen",
    "diagnostic_report",
    "immunization",
    "appointment",
    "insurance",
    "document",
)

# Map concept name (e.g., "allergy") to a converter class.
_REGISTRY: Dict[str, Type[SegmentConverter]] = {}

# Map FHIR resource type to converter classes, in registration order.
_RESOURCE_REGISTRY: Dict[str, List[Type[ResourceConverter]]] = {}

_CAPABILITIES: Optional[Mapping[str, Tuple[ResourceConverter, ...]]] = None
_LOCK = threading.Lock()


# ------------------------------------------------------------------------------
# HL7 -> FHIR
# ------------------------------------------------------------------------------


def register(concept: str):
    """
    Decorator to register a SegmentConverter class for a clinical concept.

    Parameters
    ----------
    concept : str
        Concept name, e.g. "patient". Must appear in CONVERSION_ORDER.

    Raises
    ------
    ValueError
        If the concept is unknown or already registered.
    TypeError
        If the decorated object is not a class implementing convert().

    Returns
    -------
    callable
        A class decorator that registers the converter.
    """

    def _wrap(cls: Type[SegmentConverter]) -> Type[SegmentConverter]:
        if concept not in CONVERSION_ORDER:
            raise ValueError(f"Unknown concept {concept!r}")
        if concept in _REGISTRY:
            raise ValueError(f"Converter already registered for concept {concept!r}")
        if not isinstance(cls, type):
            raise TypeError(
                f"Only classes can be registered as converters, got {type(cls)}"
            )
        if not callable(getattr(cls, "convert", None)):
            raise TypeError(
                f"Class {cls.__name__} does not implement SegmentConverter protocol"
            )

        _REGISTRY[concept] = cls
        return cls

    return _wrap


def available_concepts() -> List[str]:
    """
    List registered concepts in invocation order.

    Returns
    -------
    List[str]
        e.g. ["patient", "encounter", ...]
    """
    return [c for c in CONVERSION_ORDER if c in _REGISTRY]


def get_converter(concept: str) -> Optional[SegmentConverter]:
    """Instantiate the converter registered for concept, or None."""
    cls = _REGISTRY.get(concept)
    return cls() if cls else None


def ordered_converters() -> List[SegmentConverter]:
    """Fresh converter instances in the fixed invocation order."""
    return [_REGISTRY[c]() for c in available_concepts()]


# ------------------------------------------------------------------------------
# FHIR -> HL7
# ------------------------------------------------------------------------------


def register_resource_converter(*resource_types: str):
    """
    Decorator to register a ResourceConverter class for FHIR resource types.

    Several converters may register for the same type; all of them run.

    Raises
    ------
    ValueError
        If no resource type is given, or the class is already registered for
        one of them.
    TypeError
        If the decorated object is not a class implementing can_convert() and
        convert().
    """
    if not resource_types:
        raise ValueError("At least one resource type is required")

    def _wrap(cls: Type[ResourceConverter]) -> Type[ResourceConverter]:
        global _CAPABILITIES
        if not isinstance(cls, type):
            raise TypeError(
                f"Only classes can be registered as converters, got {type(cls)}"
            )
        if not callable(getattr(cls, "can_convert", None)) or not callable(
            getattr(cls, "convert", None)
        ):
            raise TypeError(
                f"Class {cls.__name__} does not implement ResourceConverter protocol"
            )
        for rtype in resource_types:
            if cls in _RESOURCE_REGISTRY.get(rtype, []):
                raise ValueError(
                    f"{cls.__name__} already registered for resource type {rtype!r}"
                )
        for rtype in resource_types:
            _RESOURCE_REGISTRY.setdefault(rtype, []).append(cls)
        cls.resource_types = tuple(resource_types)
        with _LOCK:
            _CAPABILITIES = None
        return cls

    return _wrap


def capability_table() -> Mapping[str, Tuple[ResourceConverter, ...]]:
    """
    Read-only map of resource type -> converter instances.

    Built on first use and reused afterwards; converters are stateless so the
    instances are safe to share between concurrent conversions.
    """
    global _CAPABILITIES
    with _LOCK:
        if _CAPABILITIES is None:
            shared: Dict[type, ResourceConverter] = {}
            table: Dict[str, Tuple[ResourceConverter, ...]] = {}
            for rtype, classes in _RESOURCE_REGISTRY.items():
                table[rtype] = tuple(shared.setdefault(c, c()) for c in classes)
            _CAPABILITIES = MappingProxyType(table)
        return _CAPABILITIES


def converters_for(resource_type: str) -> Tuple[ResourceConverter, ...]:
    """Converters registered for resource_type (empty if none)."""
    return capability_table().get(resource_type, ())


def supported_resource_types() -> List[str]:
    return sorted(_RESOURCE_REGISTRY)
