# src/hl7_fhir_bridge/batch.py
"""
Batch conversion.

Messages are converted concurrently on a thread pool, one task per message.
Each task builds its own accessor, context and output, so a failure in one
message never affects another. Results keep the input order.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .config import AppConfig
from .fhir_to_hl7 import convert_fhir_to_hl7_result
from .hl7_to_fhir import convert_hl7_to_fhir_result
from .results import CONVERSION_FAILED, ConversionResult

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)

HL7_TO_FHIR = "hl7-to-fhir"
FHIR_TO_HL7 = "fhir-to-hl7"
DIRECTIONS = (HL7_TO_FHIR, FHIR_TO_HL7)

_PREVIEW_CHARS = 200


@dataclass
class BatchResult:
    """
    Per-message results of one batch call, in input order.

    Attributes
    ----------
    results : list of ConversionResult
    """

    results: List[ConversionResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.is_full_success)

    @property
    def partial(self) -> int:
        return sum(1 for r in self.results if r.is_partial_success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.is_failure)

    def summary(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "partial": self.partial,
            "failed": self.failed,
        }


def _preview(message: Any) -> str:
    text = message if isinstance(message, str) else repr(message)
    return text[:_PREVIEW_CHARS]


def _convert_one(
    message: str,
    direction: str,
    tenant_id: Optional[str],
    config: AppConfig,
) -> ConversionResult:
    try:
        if direction == HL7_TO_FHIR:
            return convert_hl7_to_fhir_result(
                message, tenant_id=tenant_id, strict=config.strict_validation
            )
        return convert_fhir_to_hl7_result(message, config=config)
    except Exception as exc:  # isolate each message
        LOG.exception("Unexpected failure in batch conversion")
        return ConversionResult.failure(
            f"Unexpected error converting message: {exc}. Input: {_preview(message)}",
            CONVERSION_FAILED,
            exc=exc,
        )


def convert_batch(
    messages: Sequence[str],
    *,
    direction: str = HL7_TO_FHIR,
    tenant_id: Optional[str] = None,
    max_workers: Optional[int] = None,
    config: Optional[AppConfig] = None,
) -> BatchResult:
    """
    Convert many messages concurrently.

    Parameters
    ----------
    messages : sequence of str
        HL7 v2 messages or FHIR Bundle JSON texts, depending on direction.
    direction : {"hl7-to-fhir", "fhir-to-hl7"}
    tenant_id : str or None
        Tenant stamped on HL7 -> FHIR output; defaults to ``config.tenant_id``.
    max_workers : int or None
        Thread pool size; defaults to ``config.batch_workers``.
    config : AppConfig or None

    Returns
    -------
    BatchResult
        One result per input message, at the input's index.

    Raises
    ------
    ValueError
        If direction is unknown.
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"direction must be one of {DIRECTIONS}, got {direction!r}")
    cfg = config or AppConfig()
    tenant = tenant_id if tenant_id is not None else cfg.tenant_id
    workers = max(1, max_workers or cfg.batch_workers)

    items = list(messages)
    if not items:
        return BatchResult()

    LOG.info(
        "Converting %d message(s) %s with %d worker(s)", len(items), direction, workers
    )
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_convert_one, m, direction, tenant, cfg) for m in items]
        results = [f.result() for f in futures]

    batch = BatchResult(results=results)
    LOG.info("Batch finished: %s", batch.summary())
    return batch
