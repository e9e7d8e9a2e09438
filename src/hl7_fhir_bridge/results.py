# src/hl7_fhir_bridge/results.py
"""
Error and result model shared by both conversion directions.

ConversionError records carry enough locality (segment, repetition index,
field) to point back at the offending wire position. ConversionResult wraps
the produced artifact and distinguishes full success, partial success and
failure:

- full success    : output present and no errors
- partial success : output present and at least one error
- failure         : no output
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Severity(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFORMATION = "INFORMATION"


# ------------------------------------------------------------------------------
# error codes
# ------------------------------------------------------------------------------

PARSE_FAILURE = "PARSE_FAILURE"
SEGMENT_ERROR = "SEGMENT_ERROR"
FIELD_ERROR = "FIELD_ERROR"
RESOURCE_CONVERSION_ERROR = "RESOURCE_CONVERSION_ERROR"
NO_CONVERTER = "NO_CONVERTER"
WARNING = "WARNING"
VALIDATION_WARNING = "VALIDATION_WARNING"
VALIDATION_ERROR = "VALIDATION_ERROR"
REQUIRED_FIELD_MISSING = "REQUIRED_FIELD_MISSING"
NOT_SUPPORTED = "NOT_SUPPORTED"
AMBIGUOUS_SEGMENT_PATH = "AMBIGUOUS_SEGMENT_PATH"
CONVERSION_FAILED = "CONVERSION_FAILED"
INVALID_INPUT = "INVALID_INPUT"


@dataclass(frozen=True)
class ConversionError:
    """
    One recorded error, warning or informational note.

    Attributes
    ----------
    segment : str or None
        Segment name (HL7 -> FHIR) or resource type (FHIR -> HL7).
    segment_index : int or None
        0-based repetition of the segment, or bundle entry position.
    field : str or None
        Field reference such as "AL1-3".
    error_code : str
        Machine-readable code (see module constants).
    message : str
        Human-readable description.
    severity : Severity
    exception_type : str or None
        Class name of the exception that caused the record, if any.
    """

    error_code: str
    message: str
    severity: Severity = Severity.ERROR
    segment: Optional[str] = None
    segment_index: Optional[int] = None
    field: Optional[str] = None
    exception_type: Optional[str] = None

    # --------------------------------------------------------------------------
    # factories
    # --------------------------------------------------------------------------

    @classmethod
    def segment_error(
        cls,
        segment: str,
        index: Optional[int],
        message: str,
        *,
        field: Optional[str] = None,
        code: str = SEGMENT_ERROR,
        exc: Optional[BaseException] = None,
    ) -> "ConversionError":
        return cls(
            error_code=code,
            message=message,
            severity=Severity.ERROR,
            segment=segment,
            segment_index=index,
            field=field,
            exception_type=type(exc).__name__ if exc is not None else None,
        )

    @classmethod
    def field_error(
        cls,
        segment: str,
        index: Optional[int],
        field: str,
        message: str,
        *,
        severity: Severity = Severity.WARNING,
    ) -> "ConversionError":
        return cls(
            error_code=FIELD_ERROR,
            message=message,
            severity=severity,
            segment=segment,
            segment_index=index,
            field=field,
        )

    @classmethod
    def warning(
        cls,
        message: str,
        *,
        code: str = WARNING,
        segment: Optional[str] = None,
        index: Optional[int] = None,
        field: Optional[str] = None,
    ) -> "ConversionError":
        return cls(
            error_code=code,
            message=message,
            severity=Severity.WARNING,
            segment=segment,
            segment_index=index,
            field=field,
        )

    @classmethod
    def information(cls, message: str, *, code: str = WARNING) -> "ConversionError":
        return cls(error_code=code, message=message, severity=Severity.INFORMATION)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        code: str = CONVERSION_FAILED,
        segment: Optional[str] = None,
        index: Optional[int] = None,
        field: Optional[str] = None,
    ) -> "ConversionError":
        # TransformError carries its own locality
        return cls(
            error_code=code,
            message=str(exc) or type(exc).__name__,
            severity=Severity.ERROR,
            segment=getattr(exc, "segment", None) or segment,
            segment_index=(
                getattr(exc, "index", None)
                if getattr(exc, "index", None) is not None
                else index
            ),
            field=getattr(exc, "field", None) or field,
            exception_type=type(exc).__name__,
        )

    @property
    def location(self) -> Optional[str]:
        """``"Segment: AL1[2], Field: AL1-3"`` with unknown parts left out."""
        parts: List[str] = []
        if self.segment:
            idx = f"[{self.segment_index}]" if self.segment_index is not None else ""
            parts.append(f"Segment: {self.segment}{idx}")
        if self.field:
            parts.append(f"Field: {self.field}")
        return ", ".join(parts) or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segment": self.segment,
            "segmentIndex": self.segment_index,
            "field": self.field,
            "errorCode": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "exceptionType": self.exception_type,
        }

    def __str__(self) -> str:
        loc = f" ({self.location})" if self.location else ""
        return f"{self.severity.value} {self.error_code}{loc}: {self.message}"


@dataclass
class ConversionResult:
    """
    Outcome of one conversion call.

    Attributes
    ----------
    output : str or None
        Bundle JSON (HL7 -> FHIR) or ER7 text (FHIR -> HL7). None on failure.
    resource : Any
        The Bundle model for HL7 -> FHIR conversions.
    errors, warnings : list of ConversionError
    success_count : int
        Resources produced (HL7 -> FHIR) or resources converted (FHIR -> HL7).
    fail_count : int
        Failed segment scans or resource conversions.
    message_type : str or None
        e.g. "ADT^A01" inbound, "ORU" outbound.
    transaction_id : str or None
        MSH-10 / Bundle.id.
    """

    output: Optional[str] = None
    resource: Any = None
    errors: List[ConversionError] = field(default_factory=list)
    warnings: List[ConversionError] = field(default_factory=list)
    success_count: int = 0
    fail_count: int = 0
    message_type: Optional[str] = None
    transaction_id: Optional[str] = None

    @classmethod
    def failure(
        cls,
        message: str,
        code: str = CONVERSION_FAILED,
        *,
        exc: Optional[BaseException] = None,
        warnings: Optional[List[ConversionError]] = None,
        transaction_id: Optional[str] = None,
    ) -> "ConversionResult":
        err = ConversionError(
            error_code=code,
            message=message,
            severity=Severity.ERROR,
            exception_type=type(exc).__name__ if exc is not None else None,
        )
        return cls(
            errors=[err],
            warnings=list(warnings or []),
            fail_count=1,
            transaction_id=transaction_id,
        )

    @property
    def is_full_success(self) -> bool:
        return self.output is not None and not self.errors

    @property
    def is_partial_success(self) -> bool:
        return self.output is not None and bool(self.errors)

    @property
    def is_failure(self) -> bool:
        return self.output is None

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def total_issues(self) -> int:
        return len(self.errors) + len(self.warnings)

    @property
    def status(self) -> str:
        if self.is_full_success:
            return "success"
        if self.is_partial_success:
            return "partial"
        return "failed"

    def to_operation_outcome(self) -> Any:
        """Return a FHIR OperationOutcome view of the errors and warnings."""
        from .operation_outcome import build_operation_outcome

        return build_operation_outcome(self.errors, self.warnings)

    def summary(self) -> Dict[str, Any]:
        """Plain dict for audit, webhook and broker collaborators."""
        return {
            "transactionId": self.transaction_id,
            "messageType": self.message_type,
            "status": self.status,
            "successCount": self.success_count,
            "failCount": self.fail_count,
            "errorCount": len(self.errors),
            "warningCount": len(self.warnings),
            "errorCodes": sorted({e.error_code for e in self.errors}),
        }
