# src/hl7_fhir_bridge/fhir_to_hl7.py
"""
FHIR -> HL7 v2 orchestration.

Pipeline
--------
1. check and parse the Bundle JSON (message or transaction bundles only)
2. validate each entry with fhir.resources
3. choose the message type from the bundle content
4. write MSH (and EVN for ADT) from configuration
5. run every capable resource converter on every entry
6. render ER7 in the structure's segment order and re-parse it with hl7apy

A resource that fails to convert is recorded and its segments are dropped;
the rest of the bundle is still written.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from . import transform  # noqa: F401  (registers converters)
from .accessor import FieldAccessor
from .config import AppConfig
from .datetime_utils import hl7_now
from .detection import detect_message_type, message_structure
from .exceptions import ConversionFailedError, ParseError
from .fhir_parser import build_resource, parse_fhir_json
from .hl7_parser import parse_hl7_v2
from .results import (
    CONVERSION_FAILED,
    INVALID_INPUT,
    NO_CONVERTER,
    PARSE_FAILURE,
    RESOURCE_CONVERSION_ERROR,
    VALIDATION_ERROR,
    VALIDATION_WARNING,
    ConversionError,
    ConversionResult,
)
from .transform.fhir_to_v2._common import OutboundState
from .transform.registry import converters_for

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)

_BUNDLE_TYPES = ("message", "transaction")

# Canonical segment order per message type. Tuples are order/result blocks
# whose members keep their creation order.
SEGMENT_ORDER: Mapping[str, Sequence[Union[str, Tuple[str, ...]]]] = {
    "ADT": (
        "MSH", "EVN", "PID", "PD1", "ROL", "NK1", "PV1", "PV2", "DB1", "OBX",
        "AL1", "DG1", "DRG", "PR1", "GT1", "IN1", "IN2", "IN3", "ACC", "UB1",
        "UB2", "PDA",
    ),
    "ORM": (
        "MSH", "NTE", "PID", "PD1", "NK1", "PV1", "PV2", "IN1", "GT1", "AL1",
        ("ORC", "OBR", "RXO", "RXE", "RXR", "RXA", "NTE", "OBX", "SPM"),
    ),
    "ORU": (
        "MSH", "PID", "PD1", "NK1", "PV1", "PV2",
        ("ORC", "OBR", "NTE", "OBX", "SPM"),
    ),
    "SIU": (
        "MSH", "SCH", "TQ1", "NTE", "PID", "PD1", "PV1", "PV2", "OBX", "DG1",
        "RGS", "AIS", "AIG", "AIL", "AIP",
    ),
    "MDM": ("MSH", "EVN", "PID", "PV1", "TXA", "OBX"),
}

Json = Mapping[str, Any]


# ------------------------------------------------------------------------------
# stages
# ------------------------------------------------------------------------------


def _load_bundle(json_text: Union[str, Json]) -> Dict[str, Any]:
    """
    Parse and check the input bundle.

    Raises
    ------
    ParseError
        Invalid JSON.
    ValueError
        Blank input, a non-Bundle, an unsupported Bundle.type, or a
        Bundle.entry that is not a list.
    """
    if isinstance(json_text, Mapping):
        bundle = dict(json_text)
    else:
        if not isinstance(json_text, str) or not json_text.strip():
            raise ValueError("Input must not be empty")
        bundle = parse_fhir_json(json_text)
    if bundle.get("resourceType") != "Bundle":
        raise ValueError("Input must be a FHIR Bundle")
    if bundle.get("type") not in _BUNDLE_TYPES:
        raise ValueError("Bundle.type must be 'message' or 'transaction'")
    if not isinstance(bundle.get("entry") or [], list):
        raise ValueError("Bundle.entry must be a list")
    return bundle


def _validated_resources(
    bundle: Json,
    strict: bool,
    errors: List[ConversionError],
    warnings: List[ConversionError],
) -> List[Tuple[int, Json]]:
    """(entry position, resource JSON) pairs that passed (or survived) validation."""
    out: List[Tuple[int, Json]] = []
    for index, entry in enumerate(bundle.get("entry") or []):
        resource = entry.get("resource") if isinstance(entry, Mapping) else None
        if not isinstance(resource, Mapping):
            continue
        rtype = str(resource.get("resourceType"))
        try:
            build_resource(resource)
        except ParseError as e:
            if strict:
                errors.append(
                    ConversionError.segment_error(
                        rtype, index, str(e), code=VALIDATION_ERROR, exc=e
                    )
                )
                continue
            warnings.append(
                ConversionError.warning(
                    str(e), code=VALIDATION_WARNING, segment=rtype, index=index
                )
            )
        out.append((index, resource))
    return out


def _write_header(
    accessor: FieldAccessor, bundle: Json, message_type: str, config: AppConfig
) -> str:
    """Write MSH (and EVN for ADT); return the control id."""
    event, structure = message_structure(message_type)
    control_id = bundle.get("id") or uuid.uuid4().hex
    now = hl7_now()

    msh = accessor.get_segment("MSH")
    header = {
        3: config.sending_application,
        4: config.sending_facility,
        5: config.receiving_application,
        6: config.receiving_facility,
        7: now,
        10: control_id,
        11: config.processing_id,
        12: config.hl7_version,
    }
    for field_no, value in header.items():
        accessor.set(msh.path(field_no), value or None)
    for component, value in enumerate((message_type, event, structure), start=1):
        accessor.set(msh.path(9, component), value)

    if message_type == "ADT":
        evn = accessor.add_segment("EVN")
        accessor.set(evn.path(1), event)
        accessor.set(evn.path(2), now)
    return str(control_id)


def _run_converters(
    resources: List[Tuple[int, Json]],
    accessor: FieldAccessor,
    state: OutboundState,
    errors: List[ConversionError],
) -> Tuple[int, int]:
    """Return (converted, failed) resource counts."""
    converted = failed = 0
    for index, resource in resources:
        state.entry_index = index
        rtype = str(resource.get("resourceType"))
        capable = [c for c in converters_for(rtype) if c.can_convert(resource)]
        if not capable:
            state.warnings.append(
                ConversionError.warning(
                    f"No converter found for resource type: {rtype}",
                    code=NO_CONVERTER,
                    segment=rtype,
                    index=index,
                )
            )
            continue
        snapshot = len(accessor)
        try:
            for converter in capable:
                converter.convert(resource, accessor, state)
        except Exception as exc:  # one resource failing never stops the bundle
            LOG.warning("Failed to convert %s at entry %d: %s", rtype, index, exc)
            accessor.truncate(snapshot)
            errors.append(
                ConversionError.segment_error(
                    rtype,
                    index,
                    f"Failed to convert {rtype}: {exc}",
                    code=RESOURCE_CONVERSION_ERROR,
                    exc=exc,
                )
            )
            failed += 1
            continue
        converted += 1
    return converted, failed


# ------------------------------------------------------------------------------
# public API
# ------------------------------------------------------------------------------


def convert_fhir_to_hl7_result(
    json_text: Union[str, Json],
    *,
    config: Optional[AppConfig] = None,
    strict: Optional[bool] = None,
) -> ConversionResult:
    """
    Convert a FHIR message or transaction Bundle into an HL7 v2 message.

    Never raises; inspect the returned result.

    Parameters
    ----------
    json_text : str or Mapping
        Bundle JSON text (or an already parsed dict).
    config : AppConfig or None
        MSH sending / receiving values, version and processing id.
    strict : bool or None
        Promote validation warnings to errors. Defaults to
        ``config.strict_validation``.

    Returns
    -------
    ConversionResult
        ``output`` holds ER7 text with ``\\r`` segment separators.
    """
    cfg = config or AppConfig()
    strict = cfg.strict_validation if strict is None else strict

    try:
        bundle = _load_bundle(json_text)
    except ParseError as e:
        return ConversionResult.failure(str(e), PARSE_FAILURE, exc=e)
    except ValueError as e:
        return ConversionResult.failure(str(e), INVALID_INPUT, exc=e)

    errors: List[ConversionError] = []
    warnings: List[ConversionError] = []
    try:
        resources = _validated_resources(bundle, strict, errors, warnings)
        message_type = detect_message_type(bundle)
        state = OutboundState.for_resources(
            message_type, [r for _, r in resources], cfg
        )
        state.warnings = warnings
        accessor = FieldAccessor.new()
        control_id = _write_header(accessor, bundle, message_type, cfg)
    except Exception as e:  # header stages must not escape the result API
        LOG.exception("FHIR bundle could not be prepared for conversion")
        result = ConversionResult.failure(
            f"Conversion failed: {e}", CONVERSION_FAILED, exc=e, warnings=warnings
        )
        result.errors[:0] = errors
        return result
    LOG.info("Converting FHIR bundle %s to %s", control_id, message_type)

    converted, failed = _run_converters(resources, accessor, state, errors)
    failed += sum(1 for e in errors if e.error_code == VALIDATION_ERROR)

    try:
        er7 = accessor.to_er7(SEGMENT_ORDER.get(message_type))
    except Exception as e:
        LOG.error("HL7 message %s could not be rendered: %s", control_id, e)
        result = ConversionResult.failure(
            f"HL7 rendering failed: {e}",
            CONVERSION_FAILED,
            exc=e,
            warnings=state.warnings,
            transaction_id=control_id,
        )
        result.errors[:0] = errors
        return result

    try:
        parse_hl7_v2(er7, strict=False)
    except ParseError as e:
        if strict:
            LOG.error(
                "Generated %s message %s does not parse: %s",
                message_type,
                control_id,
                e,
            )
            result = ConversionResult.failure(
                f"Generated HL7 message failed validation: {e}",
                VALIDATION_ERROR,
                exc=e,
                warnings=state.warnings,
                transaction_id=control_id,
            )
            result.errors[:0] = errors
            result.message_type = message_type
            return result
        state.warnings.append(
            ConversionError.warning(
                f"Generated HL7 message did not re-parse: {e}", code=VALIDATION_WARNING
            )
        )

    result = ConversionResult(
        output=er7,
        errors=errors,
        warnings=state.warnings,
        success_count=converted,
        fail_count=failed,
        message_type=message_type,
        transaction_id=control_id,
    )
    LOG.info(
        "FHIR bundle %s converted: %d resource(s), %d error(s), %d warning(s)",
        control_id,
        converted,
        len(errors),
        len(state.warnings),
    )
    return result


def convert_fhir_to_hl7(
    json_text: Union[str, Json],
    *,
    config: Optional[AppConfig] = None,
    strict: Optional[bool] = None,
) -> str:
    """
    Convert a FHIR Bundle and return ER7 text.

    Raises
    ------
    ConversionFailedError
        If no message could be produced.
    """
    result = convert_fhir_to_hl7_result(json_text, config=config, strict=strict)
    if result.output is None:
        first = result.errors[0] if result.errors else None
        message = first.message if first is not None else "conversion failed"
        raise ConversionFailedError(message, result=result)
    return result.output
