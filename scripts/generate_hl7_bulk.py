#!/usr/bin/env python3
"""
Generate a bulk set of HL7 v2.5 messages for batch conversion runs.

Message kinds (all convertible by hl7-fhir-bridge):
    adt_a01, adt_a03, adt_a08   admit / discharge / update with AL1 and DG1
    orm_o01                     medication order (ORC, RXE, RXR)
    oru_r01                     lab result (ORC, OBR, OBX, NTE)
    siu_s12                     new appointment (SCH)
    vxu_v04                     immunization (RXA coded in CVX)
    mixed                       random mix of the above

Features:
- Rotates or fixes line endings: CR, LF, CRLF (HL7 expects CR)
- Deterministic output with --seed
- Optional single stream file alongside the per-message files
- No external dependencies

Examples:
    # 200 mixed messages, then convert the directory
    python scripts/generate_hl7_bulk.py --count 200 --out build/hl7_bulk --seed 22
    hl7-fhir-bridge batch build/hl7_bulk --direction hl7-to-fhir --out build/fhir
"""

from __future__ import annotations

import argparse
import random
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

SEED = 22

NAMES_GIVEN = ["John", "Jane", "Alex", "Sam", "Chris", "Taylor", "Jordan", "Casey Joan"]
NAMES_FAMILY = ["Doe", "Smith", "Johnson", "Lee", "Miller-Thompson", "Garcia", "Tran"]
STREETS = ["Main St", "Oak St", "Pine Ave", "Maple Rd", "White Feather Ct"]
CITIES = ["Cincinnati", "Boston", "Denver", "Austin", "Seattle"]
STATES = ["OH", "MA", "CO", "TX", "WA"]
SEX_CODES = ["M", "F", "O", "U"]

ALLERGENS = [("PCN", "Penicillin"), ("PNT", "Peanut"), ("SUL", "Sulfa")]
DIAGNOSES = [
    ("E11.9", "Type 2 diabetes"),
    ("I10", "Hypertension"),
    ("J45.909", "Asthma"),
]
VACCINES = [("08", "Hep B"), ("20", "DTaP"), ("141", "Influenza")]


def _rand_phone(rng: random.Random) -> str:
    return f"{rng.randint(200, 999)}-{rng.randint(200, 999)}-{rng.randint(0, 9999):04d}"


def _rand_dob(rng: random.Random, start_year: int = 1930, end_year: int = 2020) -> str:
    """YYYYMMDD between start_year and end_year."""
    year = rng.randint(start_year, end_year)
    return f"{year:04d}{rng.randint(1, 12):02d}{rng.randint(1, 28):02d}"


def _ts(dt: datetime) -> str:
    return dt.strftime("%Y%m%d%H%M%S")


def _msh(app: str, ts: str, msg_type: str, control: str) -> str:
    return f"MSH|^~\\&|{app}|HOSP|EHR|HOSP|{ts}||{msg_type}|{control}|P|2.5"


def _pid(rng: random.Random) -> str:
    family, given = rng.choice(NAMES_FAMILY), rng.choice(NAMES_GIVEN)
    street = f"{rng.randint(1, 9999)} {rng.choice(STREETS)}"
    i = rng.randrange(len(CITIES))
    return (
        f"PID|1||{rng.randint(10_000, 999_999)}^^^HOSP^MR||{family}^{given}"
        f"||{_rand_dob(rng)}|{rng.choice(SEX_CODES)}|||"
        f"{street}^^{CITIES[i]}^{STATES[i]}^{rng.randint(10000, 99999)}"
        f"||{_rand_phone(rng)}"
    )


# ------------------------------------------------------------------------------
# message builders
# ------------------------------------------------------------------------------


def _adt(trigger: str) -> Callable[[random.Random, str, str], List[str]]:
    def _build(rng: random.Random, ts: str, control: str) -> List[str]:
        lines = [
            _msh("ADM", ts, f"ADT^{trigger}", control),
            f"EVN|{trigger}|{ts}",
            _pid(rng),
            "PV1|1|I|ICU^101^A||||1234^Physician^Primary",
        ]
        for n, (code, text) in enumerate(rng.sample(ALLERGENS, rng.randint(0, 2)), 1):
            lines.append(f"AL1|{n}|DA|{code}^{text}|MO")
        code, text = rng.choice(DIAGNOSES)
        lines.append(f"DG1|1||{code}^{text}^I10|||F")
        return lines

    return _build


def _orm_o01(rng: random.Random, ts: str, control: str) -> List[str]:
    placer = f"ORD{rng.randint(10000, 99999)}"
    return [
        _msh("PHARM", ts, "ORM^O01", control),
        _pid(rng),
        f"ORC|NW|{placer}|||||||{ts}|||1234^Physician^Ordering",
        "RXE||1049630^Acetaminophen 325 MG^RXNORM|650||mg|TAB^Tablet|^Every 6 hours"
        f"|||{rng.randint(10, 40)}|TAB|{rng.randint(0, 3)}",
        "RXR|PO^Oral",
    ]


def _oru_r01(rng: random.Random, ts: str, control: str) -> List[str]:
    placer = f"ORD{rng.randint(10000, 99999)}"
    filler = f"LAB{rng.randint(10000, 99999)}"
    sodium = rng.uniform(120.0, 150.0)
    flag = "L" if sodium < 135 else ("H" if sodium > 145 else "N")
    return [
        _msh("LAB", ts, "ORU^R01", control),
        _pid(rng),
        f"ORC|RE|{placer}|{filler}",
        f"OBR|1|{placer}|{filler}|24321-2^Basic metabolic panel^LN|||{ts}",
        f"OBX|1|NM|2951-2^Sodium^LN||{sodium:.1f}|mmol/L|135-145|{flag}|||F",
        "NTE|1||Generated sample",
    ]


def _siu_s12(rng: random.Random, ts: str, control: str) -> List[str]:
    start = datetime.strptime(ts, "%Y%m%d%H%M%S") + timedelta(days=rng.randint(1, 30))
    minutes = rng.choice([15, 30, 45])
    end = start + timedelta(minutes=minutes)
    return [
        _msh("SCHED", ts, "SIU^S12", control),
        f"SCH|PL{control}|FL{control}||||CHK^Checkup|ROUTINE^Routine||{minutes}|min"
        f"|^^^{_ts(start)}^{_ts(end)}|||||1234^Physician^Primary|||||||||Booked",
        _pid(rng),
    ]


def _vxu_v04(rng: random.Random, ts: str, control: str) -> List[str]:
    code, text = rng.choice(VACCINES)
    return [
        _msh("IZ", ts, "VXU^V04", control),
        _pid(rng),
        f"ORC|RE||IZ{control}",
        f"RXA|0|1|{ts}||{code}^{text}^CVX|0.5|mL|||7777^Shot^Sam"
        f"|||||LOT{rng.randint(100, 999)}||MSD^Merck^MVX|||CP|A",
        "RXR|IM^Intramuscular|LA^Left arm",
    ]


BUILDERS: Dict[str, Callable[[random.Random, str, str], List[str]]] = {
    "adt_a01": _adt("A01"),
    "adt_a03": _adt("A03"),
    "adt_a08": _adt("A08"),
    "orm_o01": _orm_o01,
    "oru_r01": _oru_r01,
    "siu_s12": _siu_s12,
    "vxu_v04": _vxu_v04,
}


def generate(
    count: int,
    message_type: str = "mixed",
    seed: int = SEED,
    base_dt: Optional[datetime] = None,
) -> List[str]:
    """
    Build ``count`` messages with segments joined by CR.

    Raises
    ------
    ValueError
        If message_type is not a known kind or "mixed".
    """
    if message_type != "mixed" and message_type not in BUILDERS:
        raise ValueError(f"unknown message type: {message_type}")
    rng = random.Random(seed)
    base_dt = base_dt or datetime(2025, 1, 1, 12, 0, 0)
    kinds = sorted(BUILDERS)
    out: List[str] = []
    for i in range(1, count + 1):
        kind = rng.choice(kinds) if message_type == "mixed" else message_type
        lines = BUILDERS[kind](rng, _ts(base_dt + timedelta(minutes=i)), f"MSG{i:06d}")
        out.append("\r".join(lines))
    return out


def apply_line_endings(text: str, mode: str, idx: int) -> bytes:
    """
    HL7 expects \\r (CR). Provide flexibility:
        - 'cr'   => \\r
        - 'lf'   => \\n
        - 'crlf' => \\r\\n
        - 'mix'  => cycles [CR, LF, CRLF] by index
    """
    mode = mode.lower()
    if mode == "mix":
        mode = ("cr", "lf", "crlf")[idx % 3]
    seps = {"cr": "\r", "lf": "\n", "crlf": "\r\n"}
    if mode not in seps:
        raise ValueError("line endings must be one of: cr|lf|crlf|mix")
    return seps[mode].join(text.splitlines()).encode("utf-8")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Generate bulk HL7 v2.5 messages.")
    ap.add_argument(
        "--count", type=int, default=1000, help="How many messages (default 1000)."
    )
    ap.add_argument("--out", type=Path, required=True, help="Destination directory.")
    ap.add_argument("--seed", type=int, default=SEED, help="Random seed (default 22).")
    ap.add_argument(
        "--line-endings",
        choices=["cr", "lf", "crlf", "mix"],
        default="mix",
        help="Segment delimiters. HL7 expects CR; 'mix' cycles CR, LF, CRLF (default).",
    )
    ap.add_argument(
        "--message-type",
        choices=sorted(BUILDERS) + ["mixed"],
        default="mixed",
        help="Kind of messages to generate (default: mixed).",
    )
    ap.add_argument(
        "--stream-file",
        type=Path,
        default=None,
        help="Optional single file that receives every message, in order.",
    )
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    outdir: Path = args.out
    outdir.mkdir(parents=True, exist_ok=True)

    messages = generate(args.count, args.message_type, args.seed)

    stream_fp = None
    if args.stream_file is not None:
        args.stream_file.parent.mkdir(parents=True, exist_ok=True)
        stream_fp = args.stream_file.open("wb")

    try:
        for i, msg in enumerate(messages, 1):
            payload = apply_line_endings(msg, args.line_endings, i)
            (outdir / f"msg_{i:04d}.hl7").write_bytes(payload)
            if stream_fp is not None:
                stream_fp.write(payload)
                stream_fp.write(b"\n")
    finally:
        if stream_fp is not None:
            stream_fp.close()

    print(f"Generated {args.count} messages in {outdir}")
    if args.stream_file is not None:
        print(f"Also wrote stream file: {args.stream_file}")


if __name__ == "__main__":
    main()
