# tests/conftest.py
# Shared messages and helpers for the conversion tests.
import json
import logging
import warnings

import pytest


def pytest_configure(config):
    warnings.filterwarnings(
        "ignore",
        message=r"Adding 'defaults' to channel list implicitly is deprecated.*",
        category=FutureWarning,
        module=r"conda\.base\.context",
    )
    # hl7apy is chatty at DEBUG when it falls back to tolerant parsing
    logging.getLogger("hl7apy").setLevel(logging.WARNING)


# ------------------------------------------------------------------------------
# HL7 v2 messages
# ------------------------------------------------------------------------------

ADT_A01_MINIMAL = (
    "MSH|^~\\&|HIS|RIH|EKG|EKG|199904140038||ADT^A01|1001|P|2.5\r"
    "PID|1||100||DOE^JOHN||19700101|M\r"
)

ADT_A01_FULL = (
    "MSH|^~\\&|HIS|RIH|EKG|EKG|20240101120000||ADT^A01|MSG00042|P|2.5\r"
    "EVN|A01|20240101120000\r"
    "PID|1||12345^^^2.16.840.1.113883.19.5^MR~999-99-9999^^^SSA^SS||"
    "Doe^John^Q^Jr^Dr||19700101|M|||123 Main St^Apt 4^Springfield^IL^62701^USA^H||"
    "555-1234^PRN^PH~^NET^Internet^john@example.org|555-9876^WPN^PH||M\r"
    "NK1|1|Doe^Jane|SPO^Spouse|123 Main St^^Springfield^IL^62701|555-1111\r"
    "PV1|1|I|ICU^101^A^GENHOSP||||1234^Smith^Adam^^^Dr|5678^Jones^Beth||MED"
    "|||||||||V100\r"
    "AL1|1|DA|PCN^Penicillin^RXNORM|SV|HIVES^Hives|20200101\r"
    "AL1|2|FA|PNT^Peanut|MO|\r"
    "DG1|1||E11.9^Type 2 diabetes^I10|||F\r"
    "PR1|1||47562^Laparoscopic cholecystectomy^C4||20240102080000||||||1234^Smith^Adam\r"
    "GT1|1|G100|Doe^Jane||123 Main St^^Springfield^IL^62701|555-1111||19720202||"
    "|SPO^Spouse\r"
    "IN1|1|PPO1^Gold Plan|INS01|Acme Insurance|1 Insurer Way^^Chicago^IL^60601"
    "|||||||20240101|20241231||||SEL|||||||||||||||||||SUB123\r"
    "ZPI|Rex|VIP1|ACTIVE\r"
)

ORU_R01 = (
    "MSH|^~\\&|LAB|HOSP|EHR|HOSP|20240301080000||ORU^R01|ORU0001|P|2.5\r"
    "PID|1||555^^^HOSP^MR||Roe^Richard||19800202|M\r"
    "ORC|RE|P1|F1\r"
    "OBR|1|P1|F1|24331-1^Lipid panel^LN|||20240301070000|||||||||"
    "77^Path^Paula||||||20240301075000|||F\r"
    "OBX|1|NM|2093-3^Cholesterol^LN||180|mg/dL^milligrams per deciliter|<200|N|||F"
    "|||20240301070000\r"
    "OBX|2|ST|2571-8^Triglyceride^LN||normal||||||F\r"
    "NTE|1||Fasting sample\r"
)

ALLERGY_THIRD_BAD = (
    "MSH|^~\\&|HIS|RIH|EKG|EKG|20240101120000||ADT^A01|ALG001|P|2.5\r"
    "PID|1||100||DOE^JOHN||19700101|M\r"
    "AL1|1|DA|PCN^Penicillin|SV|HIVES^Hives\r"
    "AL1|2|FA|PNT^Peanut|MO\r"
    "AL1|3|DA|^Unknown|MI\r"
    "AL1|4|DA|SUL^Sulfa|MI\r"
)

MEDICATION_ORDER = (
    "MSH|^~\\&|PHARM|HOSP|EHR|HOSP|20240401090000||ORM^O01|RX0001|P|2.5\r"
    "PID|1||777^^^HOSP^MR||Poe^Edgar||19600101|M\r"
    "ORC|NW|P1|F1||||||20240401085000|||9001^House^Greg\r"
    "RXE||1049630^Acetaminophen 325 MG^RXNORM|650||mg|TAB^Tablet|^Every 6 hours"
    "|||20|TAB|2\r"
    "RXR|PO^Oral\r"
    "ORC|RE||F1\r"
    "RXA|0|1|20240401100000||1049630^Acetaminophen 325 MG^RXNORM|650|mg|||"
    "9002^Nurse^Nina||||||||||CP\r"
)


# ------------------------------------------------------------------------------
# FHIR helpers
# ------------------------------------------------------------------------------


def make_bundle(*resources, bundle_type="message", bundle_id="B1"):
    """Bundle JSON text holding the given resource dicts."""
    return json.dumps(
        {
            "resourceType": "Bundle",
            "id": bundle_id,
            "type": bundle_type,
            "entry": [{"resource": r} for r in resources],
        }
    )


def entries_of(bundle_json, resource_type):
    """Resource dicts of one type from Bundle JSON text."""
    data = json.loads(bundle_json)
    return [
        e["resource"]
        for e in data.get("entry", [])
        if e["resource"]["resourceType"] == resource_type
    ]


def segments_of(er7, name):
    """ER7 lines for one segment name."""
    return [s for s in er7.split("\r") if s.startswith(name + "|")]


@pytest.fixture
def smith_bundle():
    return make_bundle(
        {
            "resourceType": "Patient",
            "id": "pat-1",
            "name": [{"family": "SMITH", "given": ["JOHN"]}],
            "gender": "male",
            "birthDate": "1980-05-06",
        },
        {
            "resourceType": "Encounter",
            "id": "enc-1",
            "status": "in-progress",
            "class": {"code": "I"},
            "subject": {"reference": "Patient/pat-1"},
        },
    )
