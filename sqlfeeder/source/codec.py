"""Conversion between instants and the wall-clock timestamps a SQL backend stores.

A backend ``TIMESTAMP`` column without time zone holds a naive wall-clock
value. The codec pins that value to an explicit IANA zone so a timestamp
written under ``(locale, timezone)`` reads back as the same instant whatever
the process default zone is. The ``fold`` attribute carries the DST
fall-back disambiguation through encode and decode.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import TimestampCodecError

_LOCALE_PATTERN = re.compile(
    r"^(?P<language>[A-Za-z]{2,3})(?:[-_](?P<country>[A-Za-z]{2}|\d{3})(?:[-_](?P<variant>[A-Za-z0-9]+))?)?$"
)


def normalize_locale(value: str) -> str:
    """Normalize ``de-de``, ``de_DE.UTF-8`` or ``th_TH_TH`` style tags to ``ll_CC[_variant]``."""
    tag = value.strip().split(".", 1)[0].split("@", 1)[0]
    match = _LOCALE_PATTERN.match(tag)
    if match is None:
        raise ValueError(f"Invalid locale '{value}'. Expected a tag like 'en_US' or 'de-DE'.")

    parts = [match.group("language").lower()]
    if match.group("country"):
        parts.append(match.group("country").upper())
    if match.group("variant"):
        parts.append(match.group("variant"))
    return "_".join(parts)


def resolve_zone(key: str) -> ZoneInfo:
    try:
        return ZoneInfo(key.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone '{key}'") from exc


class TimestampCodec:
    def __init__(self, timezone: str, locale: str):
        self.zone = resolve_zone(timezone)
        self.timezone = self.zone.key
        self.locale = normalize_locale(locale)

    def __repr__(self) -> str:
        return f"TimestampCodec(timezone={self.timezone!r}, locale={self.locale!r})"

    def encode(self, instant: datetime) -> datetime:
        """Return the naive wall clock for ``instant`` in the codec zone."""
        if instant.tzinfo is None or instant.utcoffset() is None:
            raise TimestampCodecError("Cannot encode a naive datetime; attach a time zone first")
        return instant.astimezone(self.zone).replace(tzinfo=None)

    def decode(self, value: datetime) -> datetime:
        """Return the aware instant stored as ``value``.

        Naive values are wall clocks in the codec zone. Aware values are only
        converted into the zone.
        """
        if value.tzinfo is not None and value.utcoffset() is not None:
            return value.astimezone(self.zone)

        local = value.replace(tzinfo=self.zone)
        roundtrip = local.astimezone(UTC).astimezone(self.zone).replace(tzinfo=None)
        if roundtrip != value:
            raise TimestampCodecError(f"Wall clock {value.isoformat()} does not exist in {self.timezone}")
        return local

    def to_document_value(self, value: datetime | date | time) -> str:
        """Render a temporal column value as ISO-8601 for a document."""
        if isinstance(value, datetime):
            return self.decode(value).isoformat()
        return value.isoformat()

    def now(self) -> datetime:
        return datetime.now(self.zone)
