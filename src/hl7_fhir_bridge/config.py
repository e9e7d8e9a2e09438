# src/hl7_fhir_bridge/config.py
"""
Configuration utilities for hl7_fhir_bridge.

Provides a frozen dataclass-based configuration object and a loader that reads
YAML configuration files when present. The configuration feeds the outbound
MSH header, strict-mode selection, batch sizing, and the default tenant.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

_STR_KEYS = (
    "sending_application",
    "sending_facility",
    "receiving_application",
    "receiving_facility",
    "hl7_version",
    "processing_id",
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Attributes
    ----------
    default_output_dir : Path
        Directory where output files (Bundle JSON, HL7 text) are written.
    sending_application, sending_facility : str
        MSH-3 and MSH-4 for FHIR -> HL7 conversions.
    receiving_application, receiving_facility : str
        MSH-5 and MSH-6 for FHIR -> HL7 conversions.
    hl7_version : str
        MSH-12 version id.
    processing_id : str
        MSH-11 processing id (P, T or D).
    strict_validation : bool
        If True, validation warnings become fatal errors.
    batch_workers : int
        Thread pool size for batch conversions.
    tenant_id : str or None
        Default tenant stamped on converted output.
    log_level : str or None
        Overrides CLI verbosity when set.
    """

    default_output_dir: Path = Path("outputs")
    sending_application: str = "HL7FHIRBridge"
    sending_facility: str = ""
    receiving_application: str = "LegacyApp"
    receiving_facility: str = ""
    hl7_version: str = "2.5"
    processing_id: str = "P"
    strict_validation: bool = False
    batch_workers: int = 4
    tenant_id: Optional[str] = None
    log_level: Optional[str] = None


def _coerce(data: Mapping[str, Any], path: Path) -> Dict[str, Any]:
    """Validate the known keys of a config mapping and convert their types."""
    known = {f.name for f in fields(AppConfig)}
    out: Dict[str, Any] = {}

    for key, value in data.items():
        if key not in known or value is None:
            continue
        if key == "default_output_dir":
            out[key] = Path(str(value))
        elif key in _STR_KEYS:
            if not isinstance(value, (str, int, float)) or isinstance(value, bool):
                raise TypeError(
                    f"Config key {key!r} must be a string, "
                    f"got {type(value).__name__}. Config file: {path}"
                )
            out[key] = str(value)
        elif key == "strict_validation":
            if not isinstance(value, bool):
                raise TypeError(
                    f"Config key 'strict_validation' must be a boolean, "
                    f"got {type(value).__name__}. Config file: {path}"
                )
            out[key] = value
        elif key == "batch_workers":
            if not isinstance(value, int) or isinstance(value, bool):
                raise TypeError(
                    f"Config key 'batch_workers' must be an int, "
                    f"got {type(value).__name__}. Config file: {path}"
                )
            if value < 1:
                raise ValueError(
                    f"Config key 'batch_workers' must be >= 1, got {value}. "
                    f"Config file: {path}"
                )
            out[key] = value
        else:
            out[key] = str(value)
    return out


def load_config(path: Optional[Path]) -> AppConfig:
    """
    Load application configuration from a YAML file.

    Parameters
    ----------
    path : Path or None
        Path to a YAML config file. If None, defaults are used.

    Returns
    -------
    AppConfig
        The loaded configuration. Unknown keys are ignored.

    Raises
    ------
    TypeError
        If the YAML file does not parse to a mapping at the top level, or a
        known key holds a value of the wrong type.
    ValueError
        If batch_workers is less than 1.
    yaml.YAMLError
        If the file is not valid YAML.
    """
    if path is None:
        return AppConfig()

    data: Any = yaml.safe_load(path.read_text())

    if data is None:
        return AppConfig()

    if not isinstance(data, Mapping):
        raise TypeError(
            f"Config file must contain a mapping at top level, "
            f"got {type(data).__name__}. "
            f"Config file: {path}"
        )

    return AppConfig(**_coerce(data, path))
