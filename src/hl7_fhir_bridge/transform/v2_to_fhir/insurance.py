# src/hl7_fhir_bridge/transform/v2_to_fhir/insurance.py
"""
IN1 -> Coverage (+ payor Organization); GT1 -> RelatedPerson (guarantor).

Notes
-----
- The payor Organization gets the deterministic id
  ``organization-<IN1-3 company id>`` and is added to the bundle once.
- Coverage.payor is required: an IN1 without a company id falls back to a
  display-only payor (IN1-4) and then to the patient itself.
- Guarantors carry a v3 RoleCode GUAR relationship in addition to GT1-11.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fhir.resources.R4B.coverage import Coverage
from fhir.resources.R4B.organization import Organization
from fhir.resources.R4B.relatedperson import RelatedPerson

from ...accessor import FieldAccessor, SegmentHandle
from ...context import BundleBuilder, ConversionContext, sanitize_id
from ...mappings import (
    COVERAGE_CLASS,
    SUBSCRIBER_RELATIONSHIP,
    V2_0063,
    V3_ROLE_CODE,
    codeable,
    coding,
    lookup,
)
from ..base import ConverterOutput
from ..registry import register
from ._common import (
    address,
    codeable_concept,
    contact_point,
    fhir_date,
    fresh_id,
    human_name,
    identifier,
    make,
    repetitions,
    scan_segments,
    value,
)

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)

# IN1-17 insured's relationship to patient -> subscriber-relationship code
_SUBSCRIBER_RELATIONSHIP = {
    "SEL": "self",
    "SPO": "spouse",
    "CHD": "child",
    "PAR": "parent",
    "EME": "other",
    "OTH": "other",
}


def organization_id(company_id: str) -> str:
    return sanitize_id(f"organization-{company_id}")


@register("insurance")
class InsuranceConverter:
    """IN1 -> Coverage and GT1 -> RelatedPerson."""

    concept = "insurance"

    def convert(
        self,
        accessor: FieldAccessor,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> ConverterOutput:
        def _coverage(in1: SegmentHandle, index: int) -> Coverage:
            return self._build_coverage(accessor, in1, bundle, context)

        def _guarantor(gt1: SegmentHandle, index: int) -> RelatedPerson:
            return _build_guarantor(accessor, gt1, context)

        out = scan_segments(accessor, "IN1", context, _coverage)
        out.extend(scan_segments(accessor, "GT1", context, _guarantor))
        return out

    # --------------------------------------------------------------------------
    # internal helpers
    # --------------------------------------------------------------------------

    @staticmethod
    def _payor(
        accessor: FieldAccessor,
        in1: SegmentHandle,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> Dict[str, str]:
        company_id = value(accessor, in1, 3)
        company_name = value(accessor, in1, 4)
        if company_id:
            org_id = organization_id(company_id)
            if not bundle.contains("Organization", org_id):
                org = make(
                    Organization,
                    {
                        "resourceType": "Organization",
                        "id": org_id,
                        "active": True,
                        "identifier": [identifier(company_id)],
                        "name": company_name,
                        "address": [address(accessor, in1, 5)],
                    },
                )
                bundle.add(org)
                LOG.debug("Payor Organization %s added", org_id)
            out = {"reference": f"Organization/{org_id}"}
            if company_name:
                out["display"] = company_name
            return out
        if company_name:
            return {"display": company_name}
        patient = context.patient_reference()
        if patient is None:
            raise ValueError("IN1 has no insurance company and there is no patient")
        return patient

    def _build_coverage(
        self,
        accessor: FieldAccessor,
        in1: SegmentHandle,
        bundle: BundleBuilder,
        context: ConversionContext,
    ) -> Coverage:
        plan_id = value(accessor, in1, 2, 1)
        relationship = value(accessor, in1, 17)
        payload: Dict[str, Any] = {
            "resourceType": "Coverage",
            "id": fresh_id(),
            "status": "active",
            "subscriberId": value(accessor, in1, 36),
            "beneficiary": context.patient_reference(),
            "type": codeable_concept(accessor, in1, 47),
            "period": {
                "start": fhir_date(accessor, in1, 12, context),
                "end": fhir_date(accessor, in1, 13, context),
            },
            "payor": [self._payor(accessor, in1, bundle, context)],
        }
        if plan_id:
            payload["class"] = [
                {
                    "type": codeable(COVERAGE_CLASS, "plan", "Plan"),
                    "value": plan_id,
                    "name": value(accessor, in1, 2, 2),
                }
            ]
        if relationship:
            code = lookup(_SUBSCRIBER_RELATIONSHIP, relationship, "other")
            payload["relationship"] = {
                "coding": [coding(SUBSCRIBER_RELATIONSHIP, code)],
                "text": relationship,
            }
        return make(Coverage, payload)


# ------------------------------------------------------------------------------
# GT1
# ------------------------------------------------------------------------------


def _build_guarantor(
    accessor: FieldAccessor, gt1: SegmentHandle, context: ConversionContext
) -> RelatedPerson:
    relationships: List[Dict[str, Any]] = [codeable(V3_ROLE_CODE, "GUAR", "guarantor")]
    rel = codeable(V2_0063, value(accessor, gt1, 11, 1), value(accessor, gt1, 11, 2))
    if rel:
        relationships.append(rel)

    phones: List[Optional[Dict[str, Any]]] = [
        contact_point(accessor, gt1, 6, r, use="home")
        for r in repetitions(accessor, gt1, 6)
    ]
    payload: Dict[str, Any] = {
        "resourceType": "RelatedPerson",
        "id": fresh_id(),
        "active": True,
        "patient": context.patient_reference(),
        "identifier": [identifier(value(accessor, gt1, 2))],
        "name": [human_name(accessor, gt1, 3)],
        "address": [address(accessor, gt1, 5)],
        "telecom": phones,
        "birthDate": fhir_date(accessor, gt1, 8, context),
        "relationship": relationships,
    }
    return make(RelatedPerson, payload)
