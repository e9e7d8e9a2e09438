# tests/test_generate_hl7_bulk.py
"""
Tests for scripts/generate_hl7_bulk.py and a batch run over its output.
"""

import importlib.util
from pathlib import Path

import pytest

from hl7_fhir_bridge.batch import convert_batch

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "generate_hl7_bulk.py"


@pytest.fixture(scope="module")
def gen():
    spec = importlib.util.spec_from_file_location("generate_hl7_bulk", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_generate_is_deterministic(gen):
    assert gen.generate(5, seed=7) == gen.generate(5, seed=7)
    assert gen.generate(5, seed=7) != gen.generate(5, seed=8)


@pytest.mark.parametrize(
    "kind, msh9",
    [
        ("adt_a01", "ADT^A01"),
        ("adt_a03", "ADT^A03"),
        ("orm_o01", "ORM^O01"),
        ("oru_r01", "ORU^R01"),
        ("siu_s12", "SIU^S12"),
        ("vxu_v04", "VXU^V04"),
    ],
)
def test_each_kind_has_its_message_type(gen, kind, msh9):
    (msg,) = gen.generate(1, kind)
    assert msg.split("\r")[0].split("|")[8] == msh9


def test_unknown_kind_raises(gen):
    with pytest.raises(ValueError, match=r"^unknown message type"):
        gen.generate(1, "adt_a99")


@pytest.mark.parametrize(
    "mode, sep", [("cr", b"\r"), ("lf", b"\n"), ("crlf", b"\r\n")]
)
def test_apply_line_endings(gen, mode, sep):
    assert gen.apply_line_endings("A\rB", mode, 1) == b"A" + sep + b"B"


def test_apply_line_endings_mix_cycles(gen):
    assert gen.apply_line_endings("A\rB", "mix", 0) == b"A\rB"
    assert gen.apply_line_endings("A\rB", "mix", 1) == b"A\nB"
    with pytest.raises(ValueError):
        gen.apply_line_endings("A", "tab", 0)


def test_main_writes_files_and_stream(gen, tmp_path, capsys):
    out = tmp_path / "bulk"
    stream = tmp_path / "all.hl7"
    gen.main(["--count", "3", "--out", str(out), "--stream-file", str(stream)])

    assert sorted(p.name for p in out.iterdir()) == [
        "msg_0001.hl7",
        "msg_0002.hl7",
        "msg_0003.hl7",
    ]
    assert stream.read_bytes().count(b"MSH|") == 3
    assert "Generated 3 messages" in capsys.readouterr().out


def test_generated_messages_all_convert(gen):
    messages = gen.generate(30, seed=22)
    out = convert_batch(messages, max_workers=4)

    assert out.total == 30
    assert not [r for r in out.results if r.is_failure]
