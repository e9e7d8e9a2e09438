# src/hl7_fhir_bridge/transform/base.py
"""
Converter protocols for both conversion directions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Mapping, Protocol, Tuple, runtime_checkable

from fhir.resources.R4B.resource import Resource

from ..accessor import FieldAccessor

if TYPE_CHECKING:  # pragma: no cover
    from ..context import BundleBuilder, ConversionContext

__all__ = ["SegmentConverter", "ResourceConverter", "ConverterOutput"]

# Alias for readability in implementations and type hints.
ConverterOutput = List[Resource]


@runtime_checkable
class SegmentConverter(Protocol):
    """
    HL7 v2 -> FHIR converter for one clinical concept.

    Implementations read segments through the FieldAccessor, may add
    secondary resources straight into the bundle in progress, and return
    their primary resources. A converter must stop scanning a repeating
    segment at the first absent occurrence or at the first malformed one.
    """

    concept: str  # e.g., "allergy"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: "BundleBuilder",
        context: "ConversionContext",
    ) -> ConverterOutput:
        """
        Produce FHIR resources for this concept.

        Parameters
        ----------
        accessor : FieldAccessor
            Read access to the parsed message.
        bundle : BundleBuilder
            Resources produced so far (read, or add secondary artifacts).
        context : ConversionContext
            Per-call state: patient/encounter ids, link index, errors.

        Returns
        -------
        ConverterOutput
            Primary resources, in segment order.
        """
        ...


@runtime_checkable
class ResourceConverter(Protocol):
    """
    FHIR -> HL7 v2 converter for one or more resource types.

    Converters write segments into the message in progress through the
    accessor; they keep no state between calls.
    """

    resource_types: Tuple[str, ...]  # e.g., ("Patient",)

    def can_convert(self, resource: Mapping[str, Any]) -> bool:
        """Return True if this converter handles the given resource JSON."""
        ...

    def convert(
        self,
        resource: Mapping[str, Any],
        accessor: FieldAccessor,
        state: Any,
    ) -> None:
        """
        Write HL7 segments for one resource.

        Parameters
        ----------
        resource : Mapping
            Resource JSON as a dict.
        accessor : FieldAccessor
            The message in progress.
        state : OutboundState
            Per-call state (message type, bundle lookups, config).
        """
        ...
