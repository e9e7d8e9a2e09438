# src/hl7_fhir_bridge/hl7_to_fhir.py
"""
HL7 v2 -> FHIR orchestration.

Pipeline
--------
1. parse the ER7 text with hl7apy (structure-aware, then flat segments)
2. read the message type, trigger event, control id and message time
3. run every registered concept converter in the fixed order
4. add a Provenance for the produced resources
5. assemble and validate a transaction Bundle

Segment-level failures are recorded and conversion continues; only a parse
failure or an invalid Bundle ends the call without output.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fhir.resources.R4B.provenance import Provenance
from pydantic import ValidationError

from .accessor import FieldAccessor
from .context import BundleBuilder, ConversionContext, is_fhir_id, new_id, sanitize_id
from .datetime_utils import hl7_to_fhir_datetime, hl7_to_fhir_instant
from .detection import extract_message_type, extract_trigger_event
from .exceptions import ConversionFailedError, ParseError
from .fhir_parser import resource_to_json
from .hl7_parser import parse_hl7_segments, parse_hl7_v2
from .mappings import PROVENANCE_AGENT_TYPE, V3_DATA_OPERATION, codeable
from .results import (
    AMBIGUOUS_SEGMENT_PATH,
    CONVERSION_FAILED,
    INVALID_INPUT,
    PARSE_FAILURE,
    VALIDATION_ERROR,
    ConversionError,
    ConversionResult,
)
from .transform.registry import ordered_converters

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# stages
# ------------------------------------------------------------------------------


def _parse(raw: str, warnings: List[ConversionError]) -> FieldAccessor:
    """
    Parse raw ER7 into a FieldAccessor.

    Messages hl7apy cannot place in a structure are parsed segment by segment
    with a warning.

    Raises
    ------
    ParseError
        If neither parse succeeds.
    """
    try:
        return FieldAccessor.from_message(parse_hl7_v2(raw, strict=False))
    except ParseError as first:
        segments = parse_hl7_segments(raw)
        LOG.warning("Structure parse failed; using flat segments: %s", first)
        warnings.append(
            ConversionError.warning(
                "Message structure not recognized, converted segment by segment: "
                f"{first}"
            )
        )
        return FieldAccessor.from_segments(segments)


def _transaction_id(accessor: FieldAccessor, warnings: List[ConversionError]) -> str:
    control_id = accessor.get("MSH-10")
    if not control_id:
        return new_id()
    if is_fhir_id(control_id):
        return control_id
    cleaned = sanitize_id(control_id)
    warnings.append(
        ConversionError.warning(
            f"MSH-10 {control_id!r} is not a valid FHIR id; using {cleaned!r}",
            segment="MSH",
            index=0,
            field="MSH-10",
        )
    )
    return cleaned


def _message_time(accessor: FieldAccessor, context: ConversionContext) -> Optional[str]:
    raw = accessor.get("MSH-7")
    if raw is None:
        return None
    try:
        return hl7_to_fhir_datetime(raw)
    except ValueError as e:
        context.record_field_warning("MSH", 0, "MSH-7", str(e))
        return None


def _run_converters(
    accessor: FieldAccessor, bundle: BundleBuilder, context: ConversionContext
) -> None:
    for converter in ordered_converters():
        try:
            produced = converter.convert(accessor, bundle, context)
        except Exception as exc:  # one concept failing never stops the rest
            context.record_segment_error(
                converter.concept,
                None,
                f"Converter {converter.concept!r} failed: {exc}",
                exc=exc,
            )
            continue
        for resource in produced:
            bundle.add(resource)
        LOG.debug("%s: %d resource(s)", converter.concept, len(produced))


def _provenance(
    accessor: FieldAccessor, bundle: BundleBuilder, context: ConversionContext
) -> Optional[Provenance]:
    """Provenance targeting every resource produced so far."""
    targets = bundle.references()
    if not targets:
        return None
    recorded = None
    raw_time = accessor.get("MSH-7")
    if raw_time:
        try:
            recorded = hl7_to_fhir_instant(raw_time)
        except ValueError:
            recorded = None  # already reported as a MSH-7 field warning
    if recorded is None:
        recorded = datetime.now(timezone.utc).isoformat()

    source = " / ".join(p for p in (accessor.get("MSH-3"), accessor.get("MSH-4")) if p)
    source_id = accessor.get("MSH-10") or context.transaction_id
    payload = {
        "resourceType": "Provenance",
        "id": new_id(),
        "target": [{"reference": ref} for ref in targets],
        "recorded": recorded,
        "activity": codeable(V3_DATA_OPERATION, "CREATE", "create"),
        "agent": [
            {
                "type": codeable(PROVENANCE_AGENT_TYPE, "assembler", "Assembler"),
                "who": {"display": source or "HL7 v2 sender"},
            }
        ],
        "entity": [
            {
                "role": "source",
                "what": {
                    "identifier": {"value": source_id},
                    "display": f"HL7 v2 message {context.message_type or ''}".strip(),
                },
            }
        ],
    }
    return Provenance(**payload)


# ------------------------------------------------------------------------------
# public API
# ------------------------------------------------------------------------------


def convert_hl7_to_fhir_result(
    raw: str, *, tenant_id: Optional[str] = None, strict: bool = False
) -> ConversionResult:
    """
    Convert an HL7 v2 message into a FHIR transaction Bundle.

    Never raises; inspect the returned result.

    Parameters
    ----------
    raw : str
        ER7 message text (CR, LF or CRLF segment separators).
    tenant_id : str or None
        Stamped as a meta tag on the Bundle and every entry.
    strict : bool
        If True, any recorded error turns the result into a failure.

    Returns
    -------
    ConversionResult
        ``output`` holds pretty Bundle JSON, ``resource`` the Bundle model.
    """
    if not isinstance(raw, str) or not raw.strip():
        return ConversionResult.failure("Input must not be empty", INVALID_INPUT)

    warnings: List[ConversionError] = []
    try:
        accessor = _parse(raw, warnings)
    except ParseError as e:
        LOG.error("%s", e)
        return ConversionResult.failure(str(e), PARSE_FAILURE, exc=e, warnings=warnings)

    mtype = extract_message_type(accessor)
    trigger = extract_trigger_event(accessor)
    transaction_id = _transaction_id(accessor, warnings)
    context = ConversionContext(
        accessor=accessor,
        transaction_id=transaction_id,
        tenant_id=tenant_id,
        message_type=mtype,
        trigger_event=trigger,
        warnings=warnings,
    )
    context.message_time = _message_time(accessor, context)
    message_type = "^".join(p for p in (mtype, trigger) if p) or None
    LOG.info("Converting HL7 %s message %s", message_type or "?", transaction_id)

    bundle = BundleBuilder()
    _run_converters(accessor, bundle, context)

    try:
        provenance = _provenance(accessor, bundle, context)
    except (ValidationError, ValueError) as e:
        context.record_segment_error("MSH", 0, f"Provenance not built: {e}", exc=e)
        provenance = None
    if provenance is not None:
        bundle.add(provenance)

    for name in sorted(accessor.ambiguous_segments):
        context.record_warning(
            f"Segment {name} occurs at message root and inside groups; "
            "root occurrences used",
            code=AMBIGUOUS_SEGMENT_PATH,
            segment=name,
        )

    try:
        bundle_model = bundle.build(transaction_id, tenant_id)
        output = resource_to_json(bundle_model, pretty=True)
    except (ValidationError, ValueError, ParseError) as e:
        LOG.error("Bundle for %s could not be built: %s", transaction_id, e)
        result = ConversionResult.failure(
            f"Bundle validation failed: {e}",
            CONVERSION_FAILED,
            exc=e,
            warnings=context.warnings,
            transaction_id=transaction_id,
        )
        result.errors[:0] = context.errors
        result.message_type = message_type
        return result

    if strict and context.errors:
        strict_error = ConversionError(
            error_code=VALIDATION_ERROR,
            message=f"Strict mode: {len(context.errors)} error(s) recorded",
        )
        return ConversionResult(
            errors=context.errors + [strict_error],
            warnings=context.warnings,
            fail_count=len(context.errors),
            message_type=message_type,
            transaction_id=transaction_id,
        )

    result = ConversionResult(
        output=output,
        resource=bundle_model,
        errors=context.errors,
        warnings=context.warnings,
        success_count=len(bundle),
        fail_count=len(context.errors),
        message_type=message_type,
        transaction_id=transaction_id,
    )
    LOG.info(
        "HL7 message %s converted: %d resource(s), %d error(s), %d warning(s)",
        transaction_id,
        result.success_count,
        len(result.errors),
        len(result.warnings),
    )
    return result


def convert_hl7_to_fhir(
    raw: str, *, tenant_id: Optional[str] = None, strict: bool = False
) -> str:
    """
    Convert an HL7 v2 message and return pretty Bundle JSON.

    Raises
    ------
    ParseError
        If the message cannot be parsed.
    ConversionFailedError
        If no Bundle could be produced (including strict-mode failures).
    """
    result = convert_hl7_to_fhir_result(raw, tenant_id=tenant_id, strict=strict)
    if result.output is None:
        first = result.errors[0] if result.errors else None
        if first is not None and first.error_code == PARSE_FAILURE:
            raise ParseError(first.message)
        message = first.message if first is not None else "conversion failed"
        raise ConversionFailedError(message, result=result)
    return result.output
