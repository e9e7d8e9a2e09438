# src/hl7_fhir_bridge/transform/v2_to_fhir/__init__.py
"""
HL7 v2 -> FHIR converters, one module per clinical concept.

Any module here that uses @register("<concept>") is imported by load_all().
"""

from __future__ import annotations

from typing import List

from ..discovery import discover


def load_all() -> List[str]:
    """Import every converter module in this package (idempotent)."""
    return discover(__name__)


__all__ = ["load_all"]
