# src/hl7_fhir_bridge/hl7_parser.py
"""
HL7 v2 parsing utilities.

Provides:
- parse_hl7_v2: strict/lenient parsing into an hl7apy Message, with group
  inference as a second attempt for ORM/ORU-style structures
- parse_hl7_segments: flat, structure-free parsing into hl7apy Segments
- iter_segments: depth-first segment walk that records enclosing groups
- to_pretty_segments: segment-per-line ER7 strings
- to_dict: map of segment name -> list of ER7 strings
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

from hl7apy import get_default_encoding_chars
from hl7apy.consts import VALIDATION_LEVEL
from hl7apy.core import Group, Message, Segment
from hl7apy.exceptions import HL7apyException
from hl7apy.parser import parse_message, parse_segments

from .exceptions import ParseError

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)

SEGMENT_SEPARATOR = "\r"


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def normalize_er7(raw: str) -> str:
    """
    Validate raw HL7 text and normalize its segment separators to CR.

    Parameters
    ----------
    raw : str
        Raw HL7 v2 message in ER7 format (segments separated by CR/LF).

    Returns
    -------
    str
        Text with CR separators and no trailing blank segments.

    Raises
    ------
    TypeError
        If raw is not a string.
    ValueError
        If raw is an empty string.
    ParseError
        If the first segment is not MSH.
    """
    if not isinstance(raw, str):
        raise TypeError(f"raw must be str, got {type(raw).__name__}")
    if raw.strip() == "":
        raise ValueError("raw must be a non-empty HL7 v2 string")

    # Normalize line endings so \n or \r\n are accepted (HL7 expects \r)
    normalized = raw.replace("\r\n", "\r").replace("\n", "\r")
    lines = [ln for ln in normalized.split(SEGMENT_SEPARATOR) if ln.strip()]
    if not lines or not lines[0].lstrip().startswith("MSH"):
        raise ParseError("Failed to parse HL7 v2 message: first segment must be MSH")
    lines[0] = lines[0].lstrip()
    return SEGMENT_SEPARATOR.join(lines)


def _encoding_chars(normalized: str) -> Dict[str, str]:
    """Return hl7apy encoding characters declared by MSH-1/MSH-2."""
    chars = dict(get_default_encoding_chars())
    msh = normalized.split(SEGMENT_SEPARATOR, 1)[0]
    if len(msh) < 8:
        return chars
    chars["FIELD"] = msh[3]
    declared = msh[4:].split(msh[3], 1)[0]
    for key, ch in zip(("COMPONENT", "REPETITION", "ESCAPE", "SUBCOMPONENT"), declared):
        chars[key] = ch
    return chars


def _msh_version(normalized: str) -> Optional[str]:
    """Return MSH-12 (version id, first component) or None."""
    msh = normalized.split(SEGMENT_SEPARATOR, 1)[0]
    if len(msh) < 4:
        return None
    parts = msh.split(msh[3])
    # parts[0] == "MSH", parts[1] == MSH-2, so MSH-n lives at parts[n - 1]
    if len(parts) < 12:
        return None
    comp = _encoding_chars(normalized)["COMPONENT"]
    version = parts[11].split(comp, 1)[0].strip()
    return version or None


# ------------------------------------------------------------------------------
# parsing
# ------------------------------------------------------------------------------


def parse_hl7_v2(raw: str, *, strict: bool = True) -> Message:
    """
    Parse an HL7 v2 message string into an hl7apy Message.

    The first attempt parses segments directly under the message
    (find_groups=False). Structures whose segments only exist inside groups
    (e.g. ORM^O01, ORU^R01) fail that attempt, so a second attempt is made
    with hl7apy group inference.

    Parameters
    ----------
    raw : str
        Raw HL7 v2 message in ER7 format (segments separated by CR/LF).
    strict : bool, default True
        If True, uses hl7apy STRICT validation. If False, uses TOLERANT validation.

    Returns
    -------
    Message
        Parsed HL7 message object.

    Raises
    ------
    TypeError
        If raw is not a string.
    ValueError
        If raw is an empty string.
    ParseError
        If the HL7 message cannot be parsed.
    """
    normalized = normalize_er7(raw)

    # Use hl7apy enum constants (do not pass bare ints)
    vlevel = VALIDATION_LEVEL.STRICT if strict else VALIDATION_LEVEL.TOLERANT
    try:
        return parse_message(normalized, find_groups=False, validation_level=vlevel)
    except HL7apyException as first:
        LOG.debug("Flat parse failed (%s); retrying with group inference", first)
        try:
            return parse_message(
                normalized, find_groups=True, validation_level=vlevel
            )
        except HL7apyException as e:
            raise ParseError(f"Failed to parse HL7 v2 message: {e}") from e


def parse_hl7_segments(raw: str, *, strict: bool = False) -> List[Segment]:
    """
    Parse an HL7 v2 message into a flat list of segments.

    No message structure is applied, so any segment order is accepted. Used as
    the last resort for messages whose structure hl7apy cannot place.

    Parameters
    ----------
    raw : str
        Raw HL7 v2 message in ER7 format.
    strict : bool, default False
        hl7apy validation level selector.

    Returns
    -------
    List[Segment]
        Segments in document order.

    Raises
    ------
    TypeError
        If raw is not a string.
    ValueError
        If raw is an empty string.
    ParseError
        If the segments cannot be parsed.
    """
    normalized = normalize_er7(raw)
    vlevel = VALIDATION_LEVEL.STRICT if strict else VALIDATION_LEVEL.TOLERANT
    try:
        return list(
            parse_segments(
                normalized,
                version=_msh_version(normalized),
                encoding_chars=_encoding_chars(normalized),
                validation_level=vlevel,
            )
        )
    except HL7apyException as e:
        raise ParseError(f"Failed to parse HL7 v2 segments: {e}") from e


def iter_segments(
    node: Any, groups: Tuple[str, ...] = ()
) -> Iterator[Tuple[Segment, Tuple[str, ...]]]:
    """
    Walk a parsed message depth-first and yield (segment, group_chain).

    Parameters
    ----------
    node : Message, Group or iterable of Segment
        Parsed hl7apy structure.
    groups : tuple of str
        Names of the groups enclosing node (outermost first).

    Yields
    ------
    (Segment, tuple of str)
        Each segment with the names of its enclosing groups.
    """
    children = getattr(node, "children", node)
    for child in children:
        if isinstance(child, Segment):
            yield child, groups
        elif isinstance(child, Group):
            yield from iter_segments(child, groups + (str(child.name),))


def to_pretty_segments(msg: Message) -> List[str]:
    """
    Return a list of ER7 strings, one per segment, in message order.

    Parameters
    ----------
    msg : Message
        Parsed hl7apy message.

    Returns
    -------
    List[str]
        Segment strings (e.g., "PID|...").

    Raises
    ------
    TypeError
        If msg is not an hl7apy.core.Message.
    """
    if not isinstance(msg, Message):
        raise TypeError(f"msg must be hl7apy.core.Message, got {type(msg).__name__}")

    return [seg.to_er7() for seg, _ in iter_segments(msg)]


def to_dict(msg: Message) -> Dict[str, Any]:
    """
    Return a dictionary mapping segment name to list of ER7 strings.

    Parameters
    ----------
    msg : Message
        Parsed hl7apy message.

    Returns
    -------
    Dict[str, Any]
        Example: {"MSH": ["MSH|^~\\&|..."], "PID": ["PID|...", "PID|..."], ...}

    Raises
    ------
    TypeError
        If msg is not an hl7apy.core.Message.
    """
    if not isinstance(msg, Message):
        raise TypeError(f"msg must be hl7apy.core.Message, got {type(msg).__name__}")

    out: Dict[str, Any] = {}
    for seg, _ in iter_segments(msg):
        out.setdefault(seg.name, []).append(seg.to_er7())
    return out
