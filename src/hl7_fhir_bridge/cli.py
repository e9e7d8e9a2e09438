# src/hl7_fhir_bridge/cli.py
"""
Command-line interface for hl7_fhir_bridge.

Subcommands
-----------
parse-hl7
    Pretty-print parsed HL7 v2 segments from a file (or stdin with "-").

parse-fhir
    Parse a FHIR resource from a JSON or XML file and print JSON to stdout.

hl7-to-fhir
    Convert an HL7 v2 message into a FHIR transaction Bundle and write it to
    ``<transaction-id>.json`` (default) or stdout (with --stdout).

fhir-to-hl7
    Convert a FHIR message or transaction Bundle into an HL7 v2 message and
    write it to ``<control-id>.hl7`` (default) or stdout (with --stdout).

batch
    Convert every ``*.hl7`` (or ``*.json``) file in a directory concurrently.

list-converters
    Show the HL7 -> FHIR concepts in invocation order and the FHIR -> HL7
    capability table.

Exit codes
----------
0  success (including partial success; issues are logged)
1  handled, expected error (HL7FHIRBridgeError, failed conversion or
   KeyboardInterrupt)
2  CLI usage error (argparse)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from . import __version__
from .batch import DIRECTIONS, FHIR_TO_HL7, HL7_TO_FHIR, convert_batch
from .config import AppConfig, load_config
from .exceptions import HL7FHIRBridgeError
from .fhir_parser import load_fhir_json, load_fhir_xml, resource_to_json
from .fhir_to_hl7 import convert_fhir_to_hl7_result
from .hl7_parser import parse_hl7_v2, to_pretty_segments
from .hl7_to_fhir import convert_hl7_to_fhir_result
from .logging_utils import configure_logging
from .results import ConversionResult
from .transform.registry import available_concepts, capability_table

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger("hl7_fhir_bridge")

EXIT_OK = 0
EXIT_ERR = 1
EXIT_CLI = 2

_BATCH_SUFFIX = {HL7_TO_FHIR: ".hl7", FHIR_TO_HL7: ".json"}

# ------------------------------------------------------------------------------
# Parser construction
# ------------------------------------------------------------------------------


def _add_output_options(sub: argparse.ArgumentParser) -> None:
    sub.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=None,
        help="Directory to write output (defaults to config.default_output_dir).",
    )
    sub.add_argument(
        "--stdout",
        action="store_true",
        help="Write the converted message to stdout instead of a file.",
    )
    sub.add_argument(
        "--strict",
        action="store_true",
        help="Treat validation warnings and recorded errors as fatal.",
    )


def _build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argparse parser and subcommands.

    Returns
    -------
    argparse.ArgumentParser
        Configured parser with subcommands: parse-hl7, parse-fhir,
        hl7-to-fhir, fhir-to-hl7, batch, list-converters.
    """
    parser = argparse.ArgumentParser(
        prog="hl7-fhir-bridge",
        description="Convert HL7 v2 messages to FHIR R4 bundles and back.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML config file (overrides defaults).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv, -vvv).",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"hl7-fhir-bridge (cli) {__version__}",
    )

    sub = parser.add_subparsers(dest="cmd", required=True)

    # parse-hl7
    s1 = sub.add_parser("parse-hl7", help="Parse an HL7 v2 message file.")
    s1.add_argument(
        "path",
        type=Path,
        help='Path to HL7 v2 message file. Use "-" to read from stdin.',
    )

    # parse-fhir
    s2 = sub.add_parser("parse-fhir", help="Parse a FHIR JSON or XML file.")
    s2.add_argument(
        "path",
        type=Path,
        help="Path to FHIR resource file (.json or .xml).",
    )

    # hl7-to-fhir
    s3 = sub.add_parser("hl7-to-fhir", help="Convert HL7 v2 to a FHIR Bundle.")
    s3.add_argument(
        "path",
        type=Path,
        help='Path to HL7 v2 message file. Use "-" to read from stdin.',
    )
    _add_output_options(s3)
    s3.add_argument("--tenant", default=None, help="Tenant id stamped on the Bundle.")
    s3.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print JSON output (for stdout or files).",
    )
    s3.add_argument(
        "--outcome",
        action="store_true",
        help="Also write (or print) the OperationOutcome for the conversion.",
    )

    # fhir-to-hl7
    s4 = sub.add_parser("fhir-to-hl7", help="Convert a FHIR Bundle to HL7 v2.")
    s4.add_argument(
        "path",
        type=Path,
        help='Path to FHIR Bundle JSON file. Use "-" to read from stdin.',
    )
    _add_output_options(s4)

    # batch
    s5 = sub.add_parser("batch", help="Convert every message file in a directory.")
    s5.add_argument("directory", type=Path, help="Directory holding the input files.")
    s5.add_argument(
        "--direction",
        choices=DIRECTIONS,
        default=HL7_TO_FHIR,
        help="Conversion direction (default: hl7-to-fhir).",
    )
    s5.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Thread pool size (defaults to config.batch_workers).",
    )
    s5.add_argument("--tenant", default=None, help="Tenant id stamped on each Bundle.")
    s5.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=None,
        help="Directory to write outputs (defaults to config.default_output_dir).",
    )

    # list-converters
    sub.add_parser("list-converters", help="List registered converters.")

    return parser


# ------------------------------------------------------------------------------
# Validation helpers
# ------------------------------------------------------------------------------


def _validate_existing_file(path: Path, allow_stdin: bool = False) -> None:
    """
    Validate that a path exists and is a file, or is "-" if allow_stdin is True.

    Raises
    ------
    HL7FHIRBridgeError
        If the path does not exist, is not a file, is not readable,
        or if "-" is used but allow_stdin is False.
    """
    if allow_stdin and str(path) == "-":
        return
    if not path.exists():
        raise HL7FHIRBridgeError(f"File not found: {path}")
    if not path.is_file():
        raise HL7FHIRBridgeError(f"Not a file: {path}")
    if not os.access(path, os.R_OK):
        raise HL7FHIRBridgeError(f"File is not readable: {path}")


def _validate_fhir_suffix(path: Path) -> str:
    """
    Validate FHIR file suffix and return normalized format string.

    Returns
    -------
    str
        "json" or "xml".

    Raises
    ------
    HL7FHIRBridgeError
        If suffix is not .json or .xml.
    """
    suffix = path.suffix.lower()
    if suffix == ".json":
        return "json"
    if suffix == ".xml":
        return "xml"
    raise HL7FHIRBridgeError(
        f"Unsupported FHIR file type: {path.name} (expected .json or .xml)"
    )


def _resolve_output_dir(output_dir: Optional[Path], cfg: AppConfig) -> Path:
    """
    Return the output directory, created and checked for writability.

    Raises
    ------
    HL7FHIRBridgeError
        If the directory cannot be created or is not writable.
    """
    out_dir = output_dir or cfg.default_output_dir
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise HL7FHIRBridgeError(f"Cannot create output directory: {out_dir} ({e})")
    if not os.access(out_dir, os.W_OK):
        raise HL7FHIRBridgeError(f"Output directory not writable: {out_dir}")
    return out_dir


def _read_text_input(path: Path) -> str:
    """
    Read text either from a file or from stdin when path is "-".

    Raises
    ------
    HL7FHIRBridgeError
        On missing files, permission errors, or OS read failures.
    """
    try:
        if str(path) == "-":
            return sys.stdin.read()
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise HL7FHIRBridgeError(f"File not found: {path}")
    except PermissionError:
        raise HL7FHIRBridgeError(f"Permission denied: {path}")
    except OSError as e:
        raise HL7FHIRBridgeError(f"Failed to read {path}: {e}") from e


def _write_text(path: Path, text: str) -> None:
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise HL7FHIRBridgeError(f"Failed to write {path}: {e}") from e
    LOG.info("Wrote %s", path)


# ------------------------------------------------------------------------------
# Result reporting
# ------------------------------------------------------------------------------


def _log_issues(result: ConversionResult) -> None:
    """Send a result's errors and warnings to the log."""
    for err in result.errors:
        LOG.error("%s", err)
    for warn in result.warnings:
        LOG.warning("%s", warn)


def _outcome_json(result: ConversionResult, pretty: bool) -> str:
    return resource_to_json(result.to_operation_outcome(), pretty=pretty)


def _compact(text: str) -> str:
    return json.dumps(json.loads(text), separators=(",", ":"))


# ------------------------------------------------------------------------------
# Command handlers
# ------------------------------------------------------------------------------


def _cmd_parse_hl7(path: Path) -> int:
    """parse-hl7: pretty-print HL7 v2 segments."""
    _validate_existing_file(path, allow_stdin=True)
    content = _read_text_input(path)
    if not content.strip():
        raise HL7FHIRBridgeError(f"Empty HL7 input: {path}")
    msg = parse_hl7_v2(content, strict=False)
    for line in to_pretty_segments(msg):
        print(line)
    return EXIT_OK


def _cmd_parse_fhir(path: Path) -> int:
    """parse-fhir: parse a FHIR resource file and print JSON."""
    _validate_existing_file(path, allow_stdin=False)
    fmt = _validate_fhir_suffix(path)
    if fmt == "json":
        res = load_fhir_json(path)
    else:
        res = load_fhir_xml(path)
    print(resource_to_json(res, pretty=True))
    return EXIT_OK


def _cmd_hl7_to_fhir(
    path: Path,
    cfg: AppConfig,
    *,
    output_dir: Optional[Path],
    to_stdout: bool,
    pretty: bool,
    strict: bool,
    tenant: Optional[str],
    outcome: bool,
) -> int:
    """
    hl7-to-fhir: convert one HL7 v2 message into a transaction Bundle.

    Returns
    -------
    int
        EXIT_OK on full or partial success, EXIT_ERR on failure.
    """
    _validate_existing_file(path, allow_stdin=True)
    content = _read_text_input(path)
    result = convert_hl7_to_fhir_result(
        content,
        tenant_id=tenant or cfg.tenant_id,
        strict=strict or cfg.strict_validation,
    )
    _log_issues(result)

    if result.output is None:
        if outcome:
            print(_outcome_json(result, pretty))
        return EXIT_ERR

    bundle_json = result.output if pretty else _compact(result.output)
    if to_stdout:
        print(bundle_json)
        if outcome:
            print(_outcome_json(result, pretty))
        return EXIT_OK

    out_dir = _resolve_output_dir(output_dir, cfg)
    stem = result.transaction_id or "bundle"
    _write_text(out_dir / f"{stem}.json", bundle_json)
    if outcome:
        _write_text(out_dir / f"{stem}.outcome.json", _outcome_json(result, pretty))
    return EXIT_OK


def _cmd_fhir_to_hl7(
    path: Path,
    cfg: AppConfig,
    *,
    output_dir: Optional[Path],
    to_stdout: bool,
    strict: bool,
) -> int:
    """fhir-to-hl7: convert one FHIR Bundle into an HL7 v2 message."""
    _validate_existing_file(path, allow_stdin=True)
    content = _read_text_input(path)
    result = convert_fhir_to_hl7_result(content, config=cfg, strict=strict or None)
    _log_issues(result)
    if result.output is None:
        return EXIT_ERR

    if to_stdout:
        print(result.output.replace("\r", "\n"))
        return EXIT_OK

    out_dir = _resolve_output_dir(output_dir, cfg)
    _write_text(out_dir / f"{result.transaction_id or 'message'}.hl7", result.output)
    return EXIT_OK


def _cmd_batch(
    directory: Path,
    cfg: AppConfig,
    *,
    direction: str,
    workers: Optional[int],
    tenant: Optional[str],
    output_dir: Optional[Path],
) -> int:
    """
    batch: convert every input file in a directory.

    Returns
    -------
    int
        EXIT_OK when no file failed, EXIT_ERR otherwise.
    """
    if not directory.is_dir():
        raise HL7FHIRBridgeError(f"Not a directory: {directory}")
    suffix = _BATCH_SUFFIX[direction]
    files = sorted(p for p in directory.iterdir() if p.suffix.lower() == suffix)
    if not files:
        raise HL7FHIRBridgeError(
            f"No {suffix} files found in {directory}"
        )

    messages = [_read_text_input(p) for p in files]
    batch = convert_batch(
        messages,
        direction=direction,
        tenant_id=tenant,
        max_workers=workers,
        config=cfg,
    )

    out_dir = _resolve_output_dir(output_dir, cfg)
    out_suffix = ".json" if direction == HL7_TO_FHIR else ".hl7"
    for path, result in zip(files, batch.results):
        print(
            f"{path.name}: {result.status} "
            f"({len(result.errors)} error(s), {len(result.warnings)} warning(s))"
        )
        _log_issues(result)
        if result.output is not None:
            _write_text(out_dir / f"{path.stem}{out_suffix}", result.output)

    summary = batch.summary()
    print(
        f"Total {summary['total']}: {summary['succeeded']} succeeded, "
        f"{summary['partial']} partial, {summary['failed']} failed"
    )
    return EXIT_ERR if batch.failed else EXIT_OK


def _cmd_list_converters() -> int:
    """list-converters: print both registries."""
    print("HL7 v2 → FHIR concepts (invocation order):")
    for concept in available_concepts():
        print(f"    {concept}")
    print("FHIR → HL7 v2 converters:")
    for rtype, converters in sorted(capability_table().items()):
        names = ", ".join(type(c).__name__ for c in converters)
        print(f"    {rtype}: {names}")
    return EXIT_OK


# ------------------------------------------------------------------------------
# Entrypoint
# ------------------------------------------------------------------------------


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entrypoint.

    Parameters
    ----------
    argv : list[str] or None, default None
        Argument list for testing; None uses sys.argv[1:].

    Returns
    -------
    int
        Process exit code (EXIT_OK, EXIT_ERR, or EXIT_CLI).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    try:
        cfg = load_config(args.config)
    except (OSError, TypeError, ValueError, yaml.YAMLError) as e:
        LOG.error("Invalid configuration %s: %s", args.config, e)
        return EXIT_ERR
    if cfg.log_level and not args.verbose:
        configure_logging(level=cfg.log_level)

    try:
        if args.cmd == "parse-hl7":
            return _cmd_parse_hl7(args.path)
        if args.cmd == "parse-fhir":
            return _cmd_parse_fhir(args.path)
        if args.cmd == "hl7-to-fhir":
            return _cmd_hl7_to_fhir(
                args.path,
                cfg,
                output_dir=args.output_dir,
                to_stdout=bool(args.stdout),
                pretty=bool(args.pretty),
                strict=bool(args.strict),
                tenant=args.tenant,
                outcome=bool(args.outcome),
            )
        if args.cmd == "fhir-to-hl7":
            return _cmd_fhir_to_hl7(
                args.path,
                cfg,
                output_dir=args.output_dir,
                to_stdout=bool(args.stdout),
                strict=bool(args.strict),
            )
        if args.cmd == "batch":
            return _cmd_batch(
                args.directory,
                cfg,
                direction=args.direction,
                workers=args.workers,
                tenant=args.tenant,
                output_dir=args.output_dir,
            )
        if args.cmd == "list-converters":
            return _cmd_list_converters()
        parser.error("Unknown command")
        return EXIT_CLI

    except HL7FHIRBridgeError as e:
        LOG.error("%s", e)
        return EXIT_ERR
    except KeyboardInterrupt:
        LOG.error("Interrupted")
        return EXIT_ERR


if __name__ == "__main__":
    raise SystemExit(main())
