# src/hl7_fhir_bridge/accessor.py
"""
Generic read/write field addressing over a parsed HL7 v2 message.

A FieldAccessor holds the message as an ordered list of segment records
(field text split on the field separator) together with the hl7apy group
chain each segment was found in. Values are addressed with a FieldPath:

    PID-5-1          first component of the first PID-5 repetition
    PID-3(1)-4       PID-3, second repetition, component 4
    AL1(2)-3-1       third AL1 segment, AL1-3 component 1
    OBSERVATION/OBX(0)-5
                     first OBX nested in a group named *OBSERVATION

Absent paths read as None; only malformed paths (bad syntax, negative
indices) raise ValueError.

Unqualified paths probe root-level occurrences first and fall back to group
occurrences. When a segment name occurs both at root and inside a group the
root occurrences win, a warning is logged once, and the name is recorded in
``ambiguous_segments`` for the caller to report.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field as dc_field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from .hl7_parser import iter_segments

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

LOG = logging.getLogger(__name__)

_PATH_RE = re.compile(
    r"^(?:(?P<group>[A-Za-z][A-Za-z0-9_]*)/)?"
    r"(?P<segment>[A-Z][A-Z0-9]{2})(?:\((?P<index>-?\d+)\))?"
    r"(?:-(?P<field>-?\d+)(?:\((?P<rep>-?\d+)\))?"
    r"(?:-(?P<component>-?\d+)(?:-(?P<sub>-?\d+))?)?)?$"
)

_HEADER_SEGMENTS = ("MSH", "BHS", "FHS")
# MSH-2 characters, in order
_ENCODING_NAMES = ("component", "repetition", "escape", "subcomponent")


# ------------------------------------------------------------------------------
# paths and encoding
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldPath:
    """
    Address of a segment, field, repetition, component or subcomponent.

    Attributes
    ----------
    segment : str
        Three-character segment name.
    index : int
        0-based segment repetition.
    field : int or None
        1-based field number; None addresses the segment itself.
    repetition : int
        0-based field repetition.
    component, subcomponent : int or None
        1-based component/subcomponent numbers; None means "the first" on read
        and "the whole level" on write.
    group : str or None
        Restrict the lookup to segments inside a group with this name.
    position : int or None
        Pin the path to one concrete segment (see SegmentHandle.path).
    """

    segment: str
    index: int = 0
    field: Optional[int] = None
    repetition: int = 0
    component: Optional[int] = None
    subcomponent: Optional[int] = None
    group: Optional[str] = None
    position: Optional[int] = dc_field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.segment, str) or len(self.segment) != 3:
            raise ValueError(
                f"segment must be a 3-character name, got {self.segment!r}"
            )
        if self.index < 0 or self.repetition < 0:
            raise ValueError(f"negative repetition index in path {self}")
        for name in ("field", "component", "subcomponent"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ValueError(f"{name} must be >= 1 in path {self}")
        if self.subcomponent is not None and self.component is None:
            raise ValueError(f"subcomponent requires a component in path {self}")

    @classmethod
    def parse(cls, text: str) -> "FieldPath":
        """
        Parse Terser-style path text such as ``"AL1(2)-5(1)-2"``.

        Raises
        ------
        TypeError
            If text is not a string.
        ValueError
            If the text is malformed or contains a negative index.
        """
        if not isinstance(text, str):
            raise TypeError(f"path must be str, got {type(text).__name__}")
        m = _PATH_RE.match(text.strip())
        if m is None:
            raise ValueError(f"malformed field path: {text!r}")

        def _int(name: str) -> Optional[int]:
            raw = m.group(name)
            return int(raw) if raw is not None else None

        return cls(
            segment=m.group("segment"),
            index=_int("index") or 0,
            field=_int("field"),
            repetition=_int("rep") or 0,
            component=_int("component"),
            subcomponent=_int("sub"),
            group=m.group("group"),
        )

    def child(self, **changes: Any) -> "FieldPath":
        """Return a copy of this path with some parts replaced."""
        return replace(self, **changes)

    def __str__(self) -> str:
        out = f"{self.group}/" if self.group else ""
        out += f"{self.segment}({self.index})"
        if self.field is not None:
            out += f"-{self.field}"
            if self.repetition:
                out += f"({self.repetition})"
            if self.component is not None:
                out += f"-{self.component}"
                if self.subcomponent is not None:
                    out += f"-{self.subcomponent}"
        return out


PathLike = Union[str, FieldPath]


@dataclass(frozen=True)
class Encoding:
    """HL7 delimiter set declared by MSH-1 and MSH-2."""

    field: str = "|"
    component: str = "^"
    repetition: str = "~"
    escape: str = "\\"
    subcomponent: str = "&"

    @property
    def msh2(self) -> str:
        return self.component + self.repetition + self.escape + self.subcomponent

    @classmethod
    def from_msh(cls, line: str) -> "Encoding":
        """Read the delimiters from an ER7 MSH line; defaults fill any gaps."""
        if len(line) < 4:
            return cls()
        sep = line[3]
        declared = line[4:].split(sep, 1)[0]
        default = cls()
        chars = [
            declared[i] if len(declared) > i else getattr(default, name)
            for i, name in enumerate(_ENCODING_NAMES)
        ]
        return cls(sep, chars[0], chars[1], chars[2], chars[3])


# ------------------------------------------------------------------------------
# segment records
# ------------------------------------------------------------------------------


@dataclass(eq=False)
class _Record:
    name: str
    fields: List[str]
    groups: Tuple[str, ...]
    position: int


@dataclass(frozen=True)
class SegmentHandle:
    """
    Existence handle for one concrete segment occurrence.

    Attributes
    ----------
    name : str
        Segment name.
    index : int
        0-based occurrence number among all segments with this name.
    position : int
        0-based position in document order.
    groups : tuple of str
        Enclosing hl7apy group names (outermost first); empty at root.
    """

    name: str
    index: int
    position: int
    groups: Tuple[str, ...] = ()

    @property
    def is_root(self) -> bool:
        return not self.groups

    def path(
        self,
        field: int,
        component: Optional[int] = None,
        subcomponent: Optional[int] = None,
        repetition: int = 0,
    ) -> FieldPath:
        """Return a FieldPath pinned to this exact segment."""
        return FieldPath(
            segment=self.name,
            index=self.index,
            field=field,
            repetition=repetition,
            component=component,
            subcomponent=subcomponent,
            position=self.position,
        )


def _in_group(groups: Sequence[str], wanted: str) -> bool:
    """hl7apy prefixes group names with the structure (ORU_R01_OBSERVATION)."""
    wanted = wanted.upper()
    return any(g.upper() == wanted or g.upper().endswith("_" + wanted) for g in groups)


def _split_segment(line: str, enc: Encoding) -> List[str]:
    name = line[:3]
    if name in _HEADER_SEGMENTS:
        # MSH-1 is the field separator itself; MSH-2 holds the encoding chars
        return [name, enc.field] + line[4:].split(enc.field)
    return line.split(enc.field)


# ------------------------------------------------------------------------------
# accessor
# ------------------------------------------------------------------------------


class FieldAccessor:
    """
    Read/write addressing layer over one HL7 v2 message.

    Instances are cheap and never shared between conversions.
    """

    def __init__(self, encoding: Optional[Encoding] = None) -> None:
        self.encoding = encoding or Encoding()
        self.ambiguous_segments: Set[str] = set()
        self._records: List[_Record] = []
        self._by_name: Dict[str, List[_Record]] = {}
        self._unescape_re = self._compile_unescape()

    # --------------------------------------------------------------------------
    # construction
    # --------------------------------------------------------------------------

    @classmethod
    def from_message(cls, msg: Any) -> "FieldAccessor":
        """
        Build an accessor from a parsed hl7apy Message (or Group).

        Raises
        ------
        ValueError
            If the message has no MSH segment.
        """
        pairs = [(seg.to_er7(), groups) for seg, groups in iter_segments(msg)]
        return cls._from_lines(pairs)

    @classmethod
    def from_segments(cls, segments: Iterable[Any]) -> "FieldAccessor":
        """Build an accessor from a flat list of hl7apy Segments (all at root)."""
        return cls._from_lines([(seg.to_er7(), ()) for seg in segments])

    @classmethod
    def new(cls, encoding: Optional[Encoding] = None) -> "FieldAccessor":
        """Return an empty, writable message holding only an MSH segment."""
        acc = cls(encoding)
        acc._append("MSH", [acc.encoding.field, acc.encoding.msh2], ())
        return acc

    @classmethod
    def _from_lines(cls, pairs: List[Tuple[str, Tuple[str, ...]]]) -> "FieldAccessor":
        msh = next((line for line, _ in pairs if line.startswith("MSH")), None)
        if msh is None:
            raise ValueError("message has no MSH segment")
        acc = cls(Encoding.from_msh(msh))
        for line, groups in pairs:
            if not line:
                continue
            fields = _split_segment(line, acc.encoding)
            acc._append(fields[0], fields[1:], groups)
        return acc

    def _append(self, name: str, fields: List[str], groups: Tuple[str, ...]) -> _Record:
        rec = _Record(name, [name] + list(fields), tuple(groups), len(self._records))
        self._records.append(rec)
        self._by_name.setdefault(name, []).append(rec)
        return rec

    # --------------------------------------------------------------------------
    # escaping
    # --------------------------------------------------------------------------

    def _compile_unescape(self) -> "re.Pattern[str]":
        esc = re.escape(self.encoding.escape)
        return re.compile(esc + r"([^" + esc + r"]*)" + esc)

    def unescape(self, value: str) -> str:
        """Replace HL7 escape sequences (\\F\\ \\S\\ \\T\\ \\R\\ \\E\\ \\.br\\)."""
        enc = self.encoding
        table = {
            "F": enc.field,
            "S": enc.component,
            "T": enc.subcomponent,
            "R": enc.repetition,
            "E": enc.escape,
            ".br": "\n",
        }
        return self._unescape_re.sub(lambda m: table.get(m.group(1), m.group(0)), value)

    def escape(self, value: str) -> str:
        """Escape delimiter characters so value can be embedded in a field."""
        enc = self.encoding
        table = {
            enc.escape: f"{enc.escape}E{enc.escape}",
            enc.field: f"{enc.escape}F{enc.escape}",
            enc.component: f"{enc.escape}S{enc.escape}",
            enc.subcomponent: f"{enc.escape}T{enc.escape}",
            enc.repetition: f"{enc.escape}R{enc.escape}",
            "\r": f"{enc.escape}.br{enc.escape}",
            "\n": f"{enc.escape}.br{enc.escape}",
        }
        return "".join(table.get(ch, ch) for ch in value)

    # --------------------------------------------------------------------------
    # lookup
    # --------------------------------------------------------------------------

    def _candidates(self, name: str, group: Optional[str]) -> List[_Record]:
        records = self._by_name.get(name, [])
        if group:
            return [r for r in records if _in_group(r.groups, group)]
        root = [r for r in records if not r.groups]
        nested = [r for r in records if r.groups]
        if root and nested:
            if name not in self.ambiguous_segments:
                LOG.warning(
                    "Segment %s occurs both at message root and inside groups "
                    "%s; using root occurrences",
                    name,
                    sorted({r.groups[-1] for r in nested}),
                )
            self.ambiguous_segments.add(name)
        return root or nested

    def _find(self, path: FieldPath) -> Optional[_Record]:
        if path.position is not None:
            if 0 <= path.position < len(self._records):
                rec = self._records[path.position]
                return rec if rec.name == path.segment else None
            return None
        candidates = self._candidates(path.segment, path.group)
        if path.index < len(candidates):
            return candidates[path.index]
        return None

    def _handle(self, rec: _Record) -> SegmentHandle:
        index = self._by_name[rec.name].index(rec)
        return SegmentHandle(rec.name, index, rec.position, rec.groups)

    @staticmethod
    def _as_path(path: PathLike) -> FieldPath:
        if isinstance(path, FieldPath):
            return path
        return FieldPath.parse(path)

    def _field_text(self, rec: _Record, number: int) -> Optional[str]:
        if number >= len(rec.fields):
            return None
        return rec.fields[number]

    def _locate(self, path: PathLike) -> Tuple[Optional[_Record], Optional[str]]:
        """Return the record and the raw (escaped) text at the addressed level."""
        p = self._as_path(path)
        if p.field is None:
            raise ValueError(f"path must address a field: {p}")
        rec = self._find(p)
        if rec is None:
            return None, None
        raw = self._field_text(rec, p.field)
        if raw is None:
            return rec, None
        if rec.name in _HEADER_SEGMENTS and p.field in (1, 2):
            return rec, raw

        enc = self.encoding
        reps = raw.split(enc.repetition)
        if p.repetition >= len(reps):
            return rec, None
        value = reps[p.repetition]
        if p.component is None:
            return rec, value
        comps = value.split(enc.component)
        if p.component > len(comps):
            return rec, None
        value = comps[p.component - 1]
        if p.subcomponent is None:
            return rec, value
        subs = value.split(enc.subcomponent)
        if p.subcomponent > len(subs):
            return rec, None
        return rec, subs[p.subcomponent - 1]

    # --------------------------------------------------------------------------
    # read API
    # --------------------------------------------------------------------------

    def get(self, path: PathLike) -> Optional[str]:
        """
        Return the unescaped value at path, or None when absent or empty.

        When the path stops at the field (or component) level, the first
        component (or subcomponent) is returned.

        Raises
        ------
        ValueError
            If the path is malformed or does not address a field.
        """
        p = self._as_path(path)
        rec, raw = self._locate(p)
        if raw is None or rec is None:
            return None
        if not (rec.name in _HEADER_SEGMENTS and p.field in (1, 2)):
            enc = self.encoding
            if p.component is None:
                raw = raw.split(enc.component)[0]
            if p.subcomponent is None:
                raw = raw.split(enc.subcomponent)[0]
        value = self.unescape(raw)
        if value == "" or value == '""':
            return None
        return value

    def get_raw(self, path: PathLike) -> Optional[str]:
        """Return the escaped ER7 text at the addressed level, delimiters kept."""
        _, raw = self._locate(path)
        return raw if raw else None

    def get_segment(self, path: PathLike) -> Optional[SegmentHandle]:
        """Existence probe: return a handle for the addressed segment, or None."""
        rec = self._find(self._as_path(path))
        return self._handle(rec) if rec is not None else None

    def count(self, segment: str, group: Optional[str] = None) -> int:
        """Number of occurrences visible to unqualified (or group) paths."""
        return len(self._candidates(segment, group))

    def count_repetitions(self, path: PathLike) -> int:
        """Number of repetitions of the addressed field (0 when absent/empty)."""
        p = self._as_path(path)
        rec, _ = self._locate(p.child(repetition=0, component=None, subcomponent=None))
        if rec is None or p.field is None:
            return 0
        raw = self._field_text(rec, p.field)
        if not raw:
            return 0
        return len(raw.split(self.encoding.repetition))

    def segments(self, name: Optional[str] = None) -> List[SegmentHandle]:
        """All segment occurrences (root and nested) in document order."""
        records = self._records if name is None else self._by_name.get(name, [])
        return [self._handle(r) for r in records]

    def segment_text(self, handle: SegmentHandle) -> str:
        """Return the ER7 text of one segment."""
        return self._render(self._records[handle.position])

    def preceding(self, name: str, handle: SegmentHandle) -> Optional[SegmentHandle]:
        """Nearest occurrence of segment ``name`` before ``handle``."""
        for rec in reversed(self._records[: handle.position]):
            if rec.name == name:
                return self._handle(rec)
        return None

    def trailing(
        self, name: str, handle: SegmentHandle, limit: int = 50
    ) -> List[SegmentHandle]:
        """Consecutive ``name`` segments directly after ``handle``."""
        out: List[SegmentHandle] = []
        for rec in self._records[handle.position + 1 :]:
            if rec.name != name or len(out) >= limit:
                break
            out.append(self._handle(rec))
        return out

    # --------------------------------------------------------------------------
    # write API
    # --------------------------------------------------------------------------

    def set(self, path: PathLike, value: Optional[str], *, escape: bool = True) -> None:
        """
        Write value at path, creating segments, fields, repetitions and
        components as needed. None and empty strings are ignored.

        Raises
        ------
        ValueError
            If the path is malformed, addresses MSH-1/MSH-2, or does not
            address a field.
        """
        if value is None:
            return
        text = str(value)
        if text == "":
            return
        p = self._as_path(path)
        if p.field is None:
            raise ValueError(f"path must address a field: {p}")
        if p.segment in _HEADER_SEGMENTS and p.field in (1, 2):
            raise ValueError(
                f"{p.segment}-1 and {p.segment}-2 are fixed by the encoding"
            )
        if escape:
            text = self.escape(text)

        rec = self._find(p)
        if rec is None:
            if p.position is not None or p.group is not None:
                raise ValueError(f"cannot create a segment for a pinned path: {p}")
            rec = self._grow_segment(p.segment, p.index)

        enc = self.encoding
        while len(rec.fields) <= p.field:
            rec.fields.append("")
        reps = rec.fields[p.field].split(enc.repetition)
        reps += [""] * (p.repetition + 1 - len(reps))
        if p.component is None:
            reps[p.repetition] = text
        else:
            comps = reps[p.repetition].split(enc.component)
            comps += [""] * (p.component - len(comps))
            if p.subcomponent is None:
                comps[p.component - 1] = text
            else:
                subs = comps[p.component - 1].split(enc.subcomponent)
                subs += [""] * (p.subcomponent - len(subs))
                subs[p.subcomponent - 1] = text
                comps[p.component - 1] = enc.subcomponent.join(subs)
            reps[p.repetition] = enc.component.join(comps)
        rec.fields[p.field] = enc.repetition.join(reps)

    def _grow_segment(self, name: str, index: int) -> _Record:
        existing = [r for r in self._by_name.get(name, []) if not r.groups]
        # repetitions stay contiguous: fill any gap with empty segments
        rec = self._append(name, [], ())
        for _ in range(index - len(existing)):
            rec = self._append(name, [], ())
        return rec

    def add_segment(self, name: str) -> SegmentHandle:
        """Append a new, empty root-level segment and return its handle."""
        if not re.match(r"^[A-Z][A-Z0-9]{2}$", name or ""):
            raise ValueError(f"invalid segment name: {name!r}")
        return self._handle(self._append(name, [], ()))

    def append_er7(self, line: str) -> SegmentHandle:
        """Append a segment given as ER7 text in this message's encoding."""
        if not isinstance(line, str) or len(line) < 3:
            raise ValueError(f"invalid segment text: {line!r}")
        fields = _split_segment(line, self.encoding)
        handle = self.add_segment(fields[0])
        self._records[handle.position].fields.extend(fields[1:])
        return handle

    def next_set_id(self, name: str) -> int:
        """1-based Set ID for the next root occurrence of ``name``."""
        return len([r for r in self._by_name.get(name, []) if not r.groups]) + 1

    def __len__(self) -> int:
        return len(self._records)

    def truncate(self, size: int) -> None:
        """
        Drop every segment appended after the first ``size`` ones.

        Used to roll a message back to a snapshot taken with ``len()``.
        Field writes made to the surviving segments are not undone.
        """
        if size < 1:
            raise ValueError("cannot truncate the header segment")
        dropped = self._records[size:]
        if not dropped:
            return
        del self._records[size:]
        for rec in dropped:
            self._by_name[rec.name].remove(rec)
            if not self._by_name[rec.name]:
                del self._by_name[rec.name]

    # --------------------------------------------------------------------------
    # rendering
    # --------------------------------------------------------------------------

    def _render(self, rec: _Record) -> str:
        fields = list(rec.fields)
        keep = 3 if rec.name in _HEADER_SEGMENTS else 1
        while len(fields) > keep and fields[-1] == "":
            fields.pop()
        if rec.name in _HEADER_SEGMENTS:
            return rec.name + self.encoding.field + self.encoding.field.join(fields[2:])
        return self.encoding.field.join(fields)

    def to_er7(
        self,
        order: Optional[Sequence[Union[str, Sequence[str]]]] = None,
        separator: str = "\r",
    ) -> str:
        """
        Render the message as ER7 text.

        Parameters
        ----------
        order : sequence or None
            Canonical segment order. Items are segment names, or tuples of
            names forming one block (e.g. ("ORC", "OBR", "OBX")) whose members
            keep their creation order relative to each other. Segments not in
            the order follow all known ones; Z-segments come last.
        separator : str, default "\\r"
            Segment separator.
        """
        records = list(self._records)
        if order:
            rank: Dict[str, int] = {}
            for i, item in enumerate(order):
                names = (item,) if isinstance(item, str) else tuple(item)
                for nm in names:
                    rank.setdefault(nm, i)
            unknown = len(order)

            def _key(rec: _Record) -> Tuple[int, int]:
                if rec.name in rank:
                    return rank[rec.name], rec.position
                return unknown + (1 if rec.name.startswith("Z") else 0), rec.position

            records.sort(key=_key)
        return separator.join(self._render(r) for r in records)
