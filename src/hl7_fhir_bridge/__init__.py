# src/hl7_fhir_bridge/__init__.py
"""
hl7_fhir_bridge: bidirectional HL7 v2 <-> FHIR R4 transformation engine.

This package provides:
- Per-concept converters from HL7 v2 segments to FHIR resources and back.
- Orchestrators that run the converters in a fixed order and aggregate
  errors into a ConversionResult (full success, partial success, failure).
- Parser modules for HL7 and FHIR, a generic field accessor, and a CLI.
"""

from __future__ import annotations

__version__ = "0.2.0"
__all__ = [
    "__version__",
]
