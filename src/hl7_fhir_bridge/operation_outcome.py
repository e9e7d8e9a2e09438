# src/hl7_fhir_bridge/operation_outcome.py
"""
FHIR OperationOutcome view of conversion errors and warnings.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from fhir.resources.R4B.operationoutcome import OperationOutcome

from .results import ConversionError, Severity

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

_SEVERITY: Mapping[Severity, str] = {
    Severity.ERROR: "error",
    Severity.WARNING: "warning",
    Severity.INFORMATION: "information",
}

_ISSUE_TYPE: Mapping[str, str] = {
    "SEGMENT_ERROR": "structure",
    "PARSE_FAILURE": "structure",
    "FIELD_ERROR": "value",
    "VALIDATION_ERROR": "invalid",
    "VALIDATION_WARNING": "invalid",
    "INVALID_INPUT": "invalid",
    "REQUIRED_FIELD_MISSING": "required",
    "NOT_SUPPORTED": "not-supported",
    "NO_CONVERTER": "not-supported",
    "WARNING": "informational",
    "AMBIGUOUS_SEGMENT_PATH": "informational",
}


def _issue(error: ConversionError) -> Dict[str, Any]:
    issue: Dict[str, Any] = {
        "severity": _SEVERITY.get(error.severity, "error"),
        "code": _ISSUE_TYPE.get(error.error_code, "processing"),
        "diagnostics": error.message,
        "details": {"text": error.error_code},
    }
    if error.location:
        issue["location"] = [error.location]
    return issue


def build_operation_outcome(
    errors: Iterable[ConversionError],
    warnings: Iterable[ConversionError] = (),
) -> OperationOutcome:
    """
    Build an OperationOutcome with one issue per error and warning.

    Parameters
    ----------
    errors, warnings : iterable of ConversionError

    Returns
    -------
    OperationOutcome
        Errors come first, then warnings. An empty input yields a single
        informational issue so the resource stays valid.
    """
    issues: List[Dict[str, Any]] = [_issue(e) for e in errors]
    issues.extend(_issue(w) for w in warnings)
    if not issues:
        issues.append(
            {
                "severity": "information",
                "code": "informational",
                "diagnostics": "Conversion completed successfully",
            }
        )
    return OperationOutcome(resourceType="OperationOutcome", issue=issues)


def operation_outcome_from_message(
    message: str, severity: str = "error"
) -> OperationOutcome:
    """Single-issue OperationOutcome carrying a processing message."""
    return OperationOutcome(
        resourceType="OperationOutcome",
        issue=[{"severity": severity, "code": "processing", "diagnostics": message}],
    )


def operation_outcome_from_exception(
    exc: BaseException, segment: Optional[str] = None
) -> OperationOutcome:
    """Single-issue OperationOutcome describing an exception."""
    issue: Dict[str, Any] = {
        "severity": "error",
        "code": "exception",
        "diagnostics": str(exc) or type(exc).__name__,
        "details": {"text": type(exc).__name__},
    }
    if segment:
        issue["location"] = [f"HL7 Segment: {segment}"]
    return OperationOutcome(resourceType="OperationOutcome", issue=[issue])
