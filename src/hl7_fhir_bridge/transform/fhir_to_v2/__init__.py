# src/hl7_fhir_bridge/transform/fhir_to_v2/__init__.py
"""
FHIR -> HL7 v2 converters, one module per resource family.

Any module here that uses @register_resource_converter(...) is imported by
load_all().
"""

from __future__ import annotations

from typing import List

from ..discovery import discover


def load_all() -> List[str]:
    """Import every converter module in this package (idempotent)."""
    return discover(__name__)


__all__ = ["load_all"]
