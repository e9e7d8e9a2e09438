# src/hl7_fhir_bridge/transform/__init__.py
"""
Transform package initializer.

Automatically imports all converter modules under v2_to_fhir and fhir_to_v2
so their registration decorators run and populate the registries.
"""

from __future__ import annotations

from .fhir_to_v2 import load_all as _load_fhir
from .v2_to_fhir import load_all as _load_v2

# Idempotent; safe if tests/CLI import this multiple times.
_load_v2()
_load_fhir()
