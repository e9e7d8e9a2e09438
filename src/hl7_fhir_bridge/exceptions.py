# src/hl7_fhir_bridge/exceptions.py
"""
Custom exceptions for hl7_fhir_bridge.

All exceptions inherit from HL7FHIRBridgeError so that callers can catch
bridge-specific errors without grabbing unrelated built-in exceptions.
"""

from __future__ import annotations

from typing import Any, Optional


class HL7FHIRBridgeError(Exception):
    """Base class for all hl7_fhir_bridge exceptions."""

    pass


class ParseError(HL7FHIRBridgeError):
    """Raised when an HL7 or FHIR message cannot be parsed correctly."""

    pass


class TransformError(HL7FHIRBridgeError):
    """
    Raised when a mapping step cannot complete.

    Carries optional locality so the caller can point back at the offending
    wire position.
    """

    def __init__(
        self,
        message: str,
        *,
        segment: Optional[str] = None,
        index: Optional[int] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.segment = segment
        self.index = index
        self.field = field


class ConversionFailedError(HL7FHIRBridgeError):
    """Raised by the throwing entry points when no artifact was produced."""

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result
