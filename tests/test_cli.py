# tests/test_cli.py
"""
Tests for hl7_fhir_bridge/cli.
"""

import io
import json as _json
import os
import runpy
import sys
import types
from pathlib import Path

import pytest

from hl7_fhir_bridge import cli

from conftest import ALLERGY_THIRD_BAD, make_bundle

# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

HL7_TEXT = (
    "MSH|^~\\&|HIS|RIH|EKG|EKG|20250101123000||ADT^A01|MSG00001|P|2.5.1\n"
    "EVN|A01|20250101123000\n"
    "PID|1||12345^^^MRN||Doe^John||19700101|M\n"
    "PV1|1|I|2000^2012^01||||1234^Physician^Primary\n"
)

PATIENT = {
    "resourceType": "Patient",
    "id": "p1",
    "name": [{"family": "SMITH", "given": ["JOHN"]}],
    "gender": "male",
}


def write_hl7(tmp_path: Path, name: str = "msg.hl7", text: str = HL7_TEXT) -> Path:
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


def write_bundle(
    tmp_path: Path, name: str = "bundle.json", bundle_id: str = "B1"
) -> Path:
    p = tmp_path / name
    p.write_text(make_bundle(PATIENT, bundle_id=bundle_id), encoding="utf-8")
    return p


# ------------------------------------------------------------------------------
# parse-hl7 / parse-fhir
# ------------------------------------------------------------------------------


def test_parse_hl7_ok(tmp_path, capsys):
    p = write_hl7(tmp_path)
    code = cli.main(["parse-hl7", str(p)])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert "MSH|" in out and "PID|" in out


def test_parse_hl7_empty_file_is_error(tmp_path):
    p = write_hl7(tmp_path, text="  \n")
    assert cli.main(["parse-hl7", str(p)]) == cli.EXIT_ERR


def test_parse_hl7_garbage_is_error(tmp_path):
    p = write_hl7(tmp_path, text="NOT AN HL7 MESSAGE")
    assert cli.main(["parse-hl7", str(p)]) == cli.EXIT_ERR


def test_parse_fhir_json_ok(tmp_path, capsys):
    j = tmp_path / "patient.json"
    j.write_text(_json.dumps({"resourceType": "Patient", "id": "p1"}), encoding="utf-8")
    code = cli.main(["parse-fhir", str(j)])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert out.strip().startswith("{") and out.strip().endswith("}")


def test_parse_fhir_xml_ok(tmp_path, capsys):
    x = tmp_path / "patient.xml"
    x.write_text(
        '<Patient xmlns="http://hl7.org/fhir"><id value="p1"/></Patient>',
        encoding="utf-8",
    )
    code = cli.main(["parse-fhir", str(x)])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert '"resourceType"' in out and '"Patient"' in out


def test_parse_fhir_unsupported_suffix(tmp_path):
    bad = tmp_path / "z.txt"
    bad.write_text("{}", encoding="utf-8")
    code = cli.main(["parse-fhir", str(bad)])
    assert code == cli.EXIT_ERR


# ------------------------------------------------------------------------------
# _validate_existing_file
# ------------------------------------------------------------------------------


def test_parse_hl7_file_not_found(tmp_path):
    missing = tmp_path / "nope.hl7"
    code = cli.main(["parse-hl7", str(missing)])
    assert code == cli.EXIT_ERR


def test_parse_hl7_path_is_directory(tmp_path):
    d = tmp_path / "adir"
    d.mkdir()
    code = cli.main(["parse-hl7", str(d)])
    assert code == cli.EXIT_ERR


def test_parse_hl7_not_readable(tmp_path, monkeypatch):
    p = write_hl7(tmp_path)
    real_access = os.access
    # force unreadable
    monkeypatch.setattr(
        os,
        "access",
        lambda path, mode: (
            False if Path(path) == p and (mode & os.R_OK) else real_access(path, mode)
        ),
    )
    code = cli.main(["parse-hl7", str(p)])
    assert code == cli.EXIT_ERR


# ------------------------------------------------------------------------------
# hl7-to-fhir
# ------------------------------------------------------------------------------


def test_hl7_to_fhir_stdout_pretty_ok(tmp_path, capsys):
    p = write_hl7(tmp_path)
    code = cli.main(["hl7-to-fhir", str(p), "--stdout", "--pretty"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    bundle = _json.loads(out)
    assert bundle["resourceType"] == "Bundle"
    assert bundle["id"] == "MSG00001"


def test_hl7_to_fhir_writes_transaction_id_file(tmp_path):
    p = write_hl7(tmp_path)
    outdir = tmp_path / "out"
    code = cli.main(["hl7-to-fhir", str(p), "-o", str(outdir), "--tenant", "acme"])
    assert code == cli.EXIT_OK
    written = outdir / "MSG00001.json"
    assert written.exists()
    text = written.read_text(encoding="utf-8")
    # compact by default
    assert "\n" not in text
    assert '"acme"' in text


def test_hl7_to_fhir_outcome_file(tmp_path):
    p = write_hl7(tmp_path, text=ALLERGY_THIRD_BAD)
    outdir = tmp_path / "out"
    code = cli.main(["hl7-to-fhir", str(p), "-o", str(outdir), "--outcome"])
    assert code == cli.EXIT_OK
    outcome = _json.loads((outdir / "ALG001.outcome.json").read_text(encoding="utf-8"))
    assert outcome["resourceType"] == "OperationOutcome"
    assert outcome["issue"][0]["severity"] == "error"


def test_hl7_to_fhir_strict_failure_exits_err(tmp_path, capsys):
    p = write_hl7(tmp_path, text=ALLERGY_THIRD_BAD)
    code = cli.main(["hl7-to-fhir", str(p), "--stdout", "--strict", "--outcome"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_ERR
    assert '"OperationOutcome"' in out


def test_hl7_to_fhir_unparseable_exits_err(tmp_path):
    p = write_hl7(tmp_path, text="PID|1||100\n")
    assert cli.main(["hl7-to-fhir", str(p), "--stdout"]) == cli.EXIT_ERR


def test_hl7_to_fhir_stdin(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO(HL7_TEXT))
    code = cli.main(["hl7-to-fhir", "-", "--stdout"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert '"Patient"' in out


# ------------------------------------------------------------------------------
# fhir-to-hl7
# ------------------------------------------------------------------------------


def test_fhir_to_hl7_stdout_uses_newlines(tmp_path, capsys):
    p = write_bundle(tmp_path)
    code = cli.main(["fhir-to-hl7", str(p), "--stdout"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    lines = out.strip().split("\n")
    assert lines[0].startswith("MSH|")
    assert any(line.startswith("PID|") and "SMITH^JOHN" in line for line in lines)


def test_fhir_to_hl7_writes_control_id_file(tmp_path):
    p = write_bundle(tmp_path, bundle_id="CTRL42")
    outdir = tmp_path / "out"
    code = cli.main(["fhir-to-hl7", str(p), "-o", str(outdir)])
    assert code == cli.EXIT_OK
    data = (outdir / "CTRL42.hl7").read_bytes()
    assert data.startswith(b"MSH|")
    assert b"\r" in data


def test_fhir_to_hl7_non_bundle_exits_err(tmp_path):
    p = tmp_path / "patient.json"
    p.write_text(_json.dumps(PATIENT), encoding="utf-8")
    assert cli.main(["fhir-to-hl7", str(p), "--stdout"]) == cli.EXIT_ERR


def test_config_overrides_sending_application(tmp_path, capsys):
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("sending_application: MYAPP\nhl7_version: '2.4'\n", encoding="utf-8")
    p = write_bundle(tmp_path)
    code = cli.main(["--config", str(cfg), "fhir-to-hl7", str(p), "--stdout"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    msh = out.split("\n")[0].split("|")
    assert msh[2] == "MYAPP"
    assert msh[11] == "2.4"


def test_bad_config_exits_err(tmp_path):
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("- not\n- a mapping\n", encoding="utf-8")
    p = write_bundle(tmp_path)
    assert cli.main(["--config", str(cfg), "fhir-to-hl7", str(p)]) == cli.EXIT_ERR


# ------------------------------------------------------------------------------
# _resolve_output_dir
# ------------------------------------------------------------------------------


def test_output_dir_mkdir_raises_oserror(tmp_path, monkeypatch):
    p = write_hl7(tmp_path)
    bad = tmp_path / "nope"

    def boom_mkdir(self, parents=False, exist_ok=False):
        raise OSError("mkdir-fail")

    monkeypatch.setattr(Path, "mkdir", boom_mkdir)
    code = cli.main(["hl7-to-fhir", str(p), "-o", str(bad)])
    assert code == cli.EXIT_ERR


def test_output_dir_not_writable(tmp_path, monkeypatch):
    p = write_hl7(tmp_path)
    outdir = tmp_path / "outdir"
    outdir.mkdir(parents=True, exist_ok=True)
    real_access = os.access
    # deny W_OK for this directory
    monkeypatch.setattr(
        os,
        "access",
        lambda path, mode: (
            False
            if Path(path) == outdir and (mode & os.W_OK)
            else real_access(path, mode)
        ),
    )
    code = cli.main(["hl7-to-fhir", str(p), "-o", str(outdir)])
    assert code == cli.EXIT_ERR


def test_default_output_dir_from_config(tmp_path):
    default_dir = tmp_path / "default_out"
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text(f"default_output_dir: {default_dir}\n", encoding="utf-8")
    p = write_hl7(tmp_path)
    code = cli.main(["--config", str(cfg), "hl7-to-fhir", str(p)])
    assert code == cli.EXIT_OK
    assert (default_dir / "MSG00001.json").exists()


# ------------------------------------------------------------------------------
# _read_text_input
# ------------------------------------------------------------------------------


def test_read_text_input_file_not_found(tmp_path, monkeypatch):
    p = tmp_path / "ghost.hl7"
    # Make _read_text_input raise FileNotFoundError
    monkeypatch.setattr(
        Path,
        "read_text",
        lambda self, **k: (_ for _ in ()).throw(FileNotFoundError("nope")),
    )
    with pytest.raises(cli.HL7FHIRBridgeError, match=r"^File not found"):
        cli._read_text_input(p)


def test_read_text_input_permission_error(tmp_path, monkeypatch):
    p = tmp_path / "x.hl7"
    p.write_text("x", encoding="utf-8")

    def boom(*a, **k):
        raise PermissionError("denied")

    monkeypatch.setattr(Path, "read_text", boom)
    with pytest.raises(cli.HL7FHIRBridgeError, match=r"^Permission denied"):
        cli._read_text_input(p)


def test_read_text_input_oserror(tmp_path, monkeypatch):
    p = tmp_path / "x2.hl7"
    p.write_text("x", encoding="utf-8")

    def boom(*a, **k):
        raise OSError("weird-os")

    monkeypatch.setattr(Path, "read_text", boom)
    with pytest.raises(cli.HL7FHIRBridgeError, match=r"^Failed to read"):
        cli._read_text_input(p)


def test_write_text_oserror(tmp_path, monkeypatch):
    def boom(*a, **k):
        raise OSError("disk-full")

    monkeypatch.setattr(Path, "write_text", boom)
    with pytest.raises(cli.HL7FHIRBridgeError, match=r"^Failed to write"):
        cli._write_text(tmp_path / "x.json", "{}")


# ------------------------------------------------------------------------------
# batch
# ------------------------------------------------------------------------------


def test_batch_reports_each_file_and_total(tmp_path, capsys):
    indir = tmp_path / "in"
    indir.mkdir()
    write_hl7(indir, "a.hl7")
    write_hl7(indir, "b.hl7", text=ALLERGY_THIRD_BAD)
    write_hl7(indir, "notes.txt", text="ignored")
    outdir = tmp_path / "out"

    code = cli.main(["batch", str(indir), "-o", str(outdir), "--workers", "2"])
    out, _ = capsys.readouterr()

    assert code == cli.EXIT_OK
    assert "a.hl7: " in out
    assert "b.hl7: partial (1 error(s)" in out
    assert "notes.txt" not in out
    assert "Total 2: " in out
    assert (outdir / "a.json").exists()
    assert (outdir / "b.json").exists()


def test_batch_failure_exits_err(tmp_path, capsys):
    indir = tmp_path / "in"
    indir.mkdir()
    write_hl7(indir, "good.hl7")
    write_hl7(indir, "bad.hl7", text="garbage")

    code = cli.main(["batch", str(indir), "-o", str(tmp_path / "out")])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_ERR
    assert "bad.hl7: failed" in out
    assert "1 failed" in out


def test_batch_fhir_direction(tmp_path, capsys):
    indir = tmp_path / "in"
    indir.mkdir()
    write_bundle(indir, "one.json")
    outdir = tmp_path / "out"

    code = cli.main(
        ["batch", str(indir), "--direction", "fhir-to-hl7", "-o", str(outdir)]
    )
    assert code == cli.EXIT_OK
    assert (outdir / "one.hl7").read_text(encoding="utf-8").startswith("MSH|")


def test_batch_not_a_directory(tmp_path):
    p = write_hl7(tmp_path)
    assert cli.main(["batch", str(p)]) == cli.EXIT_ERR


def test_batch_empty_directory(tmp_path):
    d = tmp_path / "empty"
    d.mkdir()
    assert cli.main(["batch", str(d)]) == cli.EXIT_ERR


# ------------------------------------------------------------------------------
# list-converters
# ------------------------------------------------------------------------------


def test_list_converters(capsys):
    code = cli.main(["list-converters"])
    out, _ = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert "HL7 v2 → FHIR concepts (invocation order):" in out
    assert "FHIR → HL7 v2 converters:" in out
    lines = [line.strip() for line in out.splitlines()]
    assert lines.index("patient") < lines.index("encounter") < lines.index("insurance")
    assert any(line.startswith("Patient: ") for line in lines)


# ------------------------------------------------------------------------------
# main()
# ------------------------------------------------------------------------------


def test_main_keyboardinterrupt(tmp_path, monkeypatch):
    p = write_hl7(tmp_path)
    monkeypatch.setattr(
        "hl7_fhir_bridge.cli._cmd_parse_hl7",
        lambda _: (_ for _ in ()).throw(KeyboardInterrupt),
    )
    code = cli.main(["parse-hl7", str(p)])
    assert code == cli.EXIT_ERR


def test_main_unknown_command_path(monkeypatch):
    # Build a dummy parser
    class DummyParser:
        def parse_args(self, argv=None):
            return types.SimpleNamespace(cmd="weird", verbose=0, config=None)

        def error(self, msg):
            # override to NOT raise SystemExit so main() reaches return EXIT_CLI
            return None

    monkeypatch.setattr("hl7_fhir_bridge.cli._build_parser", lambda: DummyParser())
    code = cli.main([])
    assert code == cli.EXIT_CLI


def test_missing_subcommand_is_usage_error():
    with pytest.raises(SystemExit) as e:
        cli.main([])
    assert e.value.code == cli.EXIT_CLI


# ------------------------------------------------------------------------------
# __main__
# ------------------------------------------------------------------------------


def test_main_dunder_name_runs_ok(monkeypatch):
    # Execute module as __main__ cleanly
    saved_modules = {}
    for k in list(sys.modules.keys()):
        if k.startswith("hl7_fhir_bridge"):
            saved_modules[k] = sys.modules.pop(k)

    old_argv, old_stdin = sys.argv, sys.stdin
    try:
        sys.argv = ["hl7-fhir-bridge", "parse-hl7", "-"]
        sys.stdin = io.StringIO(HL7_TEXT)
        with pytest.raises(SystemExit) as e:
            runpy.run_module("hl7_fhir_bridge.cli", run_name="__main__")
        assert e.value.code == 0
    finally:
        sys.argv, sys.stdin = old_argv, old_stdin
        # Restore the original module objects so later tests' monkeypatches
        # target the same modules their imported names come from.
        for k in list(sys.modules.keys()):
            if k.startswith("hl7_fhir_bridge"):
                sys.modules.pop(k, None)
        sys.modules.update(saved_modules)
