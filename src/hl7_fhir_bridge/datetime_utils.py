# src/hl7_fhir_bridge/datetime_utils.py
"""
Date/time conversion between HL7 v2 TS/DTM values and FHIR date types.

HL7 values look like ``YYYY[MM[DD[HH[MM[SS[.S...]]]]]][+/-ZZZZ]``. FHIR dates
keep the precision of the input; FHIR dateTimes with a time part always
carry an offset (UTC when the HL7 value has none).
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

# ------------------------------------------------------------------------------
# globals
# ------------------------------------------------------------------------------

_HL7_TS = re.compile(
    r"^(?P<year>\d{4})"
    r"(?:(?P<month>\d{2})"
    r"(?:(?P<day>\d{2})"
    r"(?:(?P<hour>\d{2})"
    r"(?:(?P<minute>\d{2})"
    r"(?:(?P<second>\d{2})(?:\.(?P<frac>\d{1,6}))?)?)?)?)?)?"
    r"(?P<tz>[+-]\d{4})?$"
)

_FHIR_DATE = re.compile(r"^(\d{4})(?:-(\d{2})(?:-(\d{2}))?)?$")

DateLike = Union[str, date, datetime]


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def _match(value: str) -> "re.Match[str]":
    if not isinstance(value, str):
        raise TypeError(f"value must be str, got {type(value).__name__}")
    m = _HL7_TS.match(value.strip())
    if m is None:
        raise ValueError(f"invalid HL7 date/time: {value!r}")
    return m


def _offset(tz: Optional[str]) -> timezone:
    if not tz:
        return timezone.utc
    sign = -1 if tz[0] == "-" else 1
    hours, minutes = int(tz[1:3]), int(tz[3:5])
    if hours > 14 or minutes > 59:
        raise ValueError(f"invalid HL7 time zone offset: {tz!r}")
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


# ------------------------------------------------------------------------------
# HL7 -> FHIR
# ------------------------------------------------------------------------------


def parse_hl7_datetime(value: str) -> datetime:
    """
    Parse an HL7 TS/DTM value into a timezone-aware datetime.

    Missing parts default to the first month/day and midnight; a missing
    offset means UTC.

    Raises
    ------
    TypeError
        If value is not a string.
    ValueError
        If value is not a valid HL7 date/time.
    """
    m = _match(value)
    frac = m.group("frac") or ""
    micro = int(frac.ljust(6, "0")) if frac else 0
    return datetime(
        int(m.group("year")),
        int(m.group("month") or 1),
        int(m.group("day") or 1),
        int(m.group("hour") or 0),
        int(m.group("minute") or 0),
        int(m.group("second") or 0),
        micro,
        tzinfo=_offset(m.group("tz")),
    )


def hl7_to_fhir_date(value: str) -> str:
    """
    Convert an HL7 date or timestamp to a FHIR ``date`` string.

    Precision is kept: ``1970`` -> ``1970``, ``197001`` -> ``1970-01``,
    ``19700101`` (or longer) -> ``1970-01-01``.
    """
    m = _match(value)
    # also validates the calendar date
    parse_hl7_datetime(value)
    if m.group("month") is None:
        return m.group("year")
    if m.group("day") is None:
        return f"{m.group('year')}-{m.group('month')}"
    return f"{m.group('year')}-{m.group('month')}-{m.group('day')}"


def hl7_to_fhir_datetime(value: str) -> str:
    """
    Convert an HL7 TS/DTM to a FHIR ``dateTime`` string.

    Values without a time part keep date precision. Values with a time part
    become full ISO timestamps with an offset (``+00:00`` when absent).
    """
    m = _match(value)
    if m.group("hour") is None:
        return hl7_to_fhir_date(value)
    return parse_hl7_datetime(value).isoformat()


def hl7_to_fhir_instant(value: str) -> str:
    """Convert an HL7 TS/DTM to a FHIR ``instant`` (always a full timestamp)."""
    return parse_hl7_datetime(value).isoformat()


# ------------------------------------------------------------------------------
# FHIR -> HL7
# ------------------------------------------------------------------------------


def _coerce(value: DateLike) -> Union[date, datetime, str]:
    if isinstance(value, (datetime, date)):
        return value
    if not isinstance(value, str):
        raise TypeError(
            f"value must be str, date or datetime, got {type(value).__name__}"
        )
    text = value.strip()
    if not text:
        raise ValueError("value must be a non-empty date string")
    if _FHIR_DATE.match(text):
        return text
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"invalid FHIR date/time: {value!r}") from e


def fhir_to_hl7_datetime(value: DateLike) -> str:
    """
    Convert a FHIR date/dateTime/instant to HL7 ``YYYYMMDDHHMMSS+ZZZZ``.

    Partial FHIR dates (``YYYY``, ``YYYY-MM``, ``YYYY-MM-DD``) keep their
    precision. Naive datetimes are treated as UTC.
    """
    coerced = _coerce(value)
    if isinstance(coerced, str):
        return coerced.replace("-", "")
    if not isinstance(coerced, datetime):
        return coerced.strftime("%Y%m%d")
    if coerced.tzinfo is None:
        coerced = coerced.replace(tzinfo=timezone.utc)
    return coerced.strftime("%Y%m%d%H%M%S%z")


def fhir_to_hl7_date(value: DateLike) -> str:
    """Convert a FHIR date/dateTime to HL7 ``YYYYMMDD`` (or shorter if partial)."""
    coerced = _coerce(value)
    if isinstance(coerced, str):
        return coerced.replace("-", "")
    return coerced.strftime("%Y%m%d")


def hl7_now() -> str:
    """Return the current UTC time as an HL7 timestamp."""
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%z")
