"""
Timestamp handling for values of mixed provenance.

Timestamps reach us as native datetimes (primary store), wrapped
timestamp objects (Firestore / protobuf) and ISO-8601 text (FHIR
meta.lastUpdated, request bodies). DateLike tags each variant once at the
boundary; to_datetime() is the single conversion, always returning an
aware UTC datetime so values from different sources sort together.

FHIR dateTime may be partial: "2024" reads as 2024-01-01 and "2024-05"
as 2024-05-01, both at midnight UTC.
"""

import re
from dataclasses import dataclass
from datetime import datetime, date, timezone
from typing import Any, Union

from clinicsync.errors import ValidationError


@dataclass(frozen=True)
class Native:
    value: datetime


@dataclass(frozen=True)
class Wrapped:
    """A timestamp object exposing to_datetime() or ToDatetime()."""
    value: Any


@dataclass(frozen=True)
class Text:
    value: str


DateLike = Union[Native, Wrapped, Text]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def coerce(value: Any) -> DateLike:
    """Tag a raw value with its DateLike variant."""
    if isinstance(value, (Native, Wrapped, Text)):
        return value
    if isinstance(value, datetime):
        return Native(value)
    if isinstance(value, date):
        return Native(datetime(value.year, value.month, value.day))
    if isinstance(value, str):
        return Text(value)
    if hasattr(value, "to_datetime") or hasattr(value, "ToDatetime"):
        return Wrapped(value)
    raise ValidationError(f"Unsupported timestamp value: {value!r}")


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_datetime(value: Any) -> datetime:
    """Convert any DateLike (or raw value) to an aware UTC datetime."""
    tagged = coerce(value)

    if isinstance(tagged, Native):
        return _as_utc(tagged.value)

    if isinstance(tagged, Wrapped):
        raw = tagged.value
        converter = getattr(raw, "to_datetime", None) or getattr(raw, "ToDatetime")
        return _as_utc(converter())

    text = tagged.value.strip()
    if not text:
        raise ValidationError("Empty timestamp")
    try:
        return _as_utc(_parse_text(text))
    except ValueError:
        raise ValidationError(f"Invalid timestamp: {tagged.value!r}")


# FHIR dateTime: YYYY, YYYY-MM, YYYY-MM-DD or a full instant
_PARTIAL_DATE = re.compile(r"^(\d{4})(?:-(\d{2}))?$")
_FRACTION = re.compile(r"^(.*T\d{2}:\d{2}:\d{2})\.(\d+)(.*)$")


def _parse_text(text: str) -> datetime:
    partial = _PARTIAL_DATE.match(text)
    if partial:
        return datetime(int(partial.group(1)), int(partial.group(2) or 1), 1)

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat only takes 3 or 6 fractional digits before Python 3.11
    fraction = _FRACTION.match(text)
    if fraction:
        head, digits, tail = fraction.groups()
        text = f"{head}.{digits[:6].ljust(6, '0')}{tail}"
    return datetime.fromisoformat(text)


def to_iso(value: Any) -> str:
    """Render a timestamp as ISO-8601 with an explicit UTC offset."""
    return to_datetime(value).isoformat()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
