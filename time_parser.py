"""Flexible time parsing for booking requests.

Inputs are matched against an ordered list of grammars. The first grammar
whose *shape* matches the literal owns it: its formats are tried in order and
if none yields a valid time the parse fails, without falling through to the
later grammars. Bare clock times (``"5:30PM"``, ``"17:00"``) are anchored to
the current date in the requested timezone.

Precedence:

1. ``iso_datetime``  ``2025-12-13T10:00``, ``2025-12-13 10:00:00+05:30``
2. ``date_time``     ``2025-12-13 9:00``, ``2025/12/13 10:00``, ``13-12-2025 10:00``
3. ``clock_12h``     ``6 AM``, ``5:30PM``, ``11:15 p.m.``
4. ``clock_24h``     ``17:00``, ``7:30``, ``9``
5. ``iso_fallback``  anything else starting like an ISO date, e.g. ``2025-12-13``
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Callable, List, NamedTuple, Optional, Pattern, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

UTC = timezone.utc


@dataclass(frozen=True)
class ZonedInstant:
    """An absolute instant together with its room-local wall-clock reading."""

    instant: datetime
    local: datetime

    @classmethod
    def from_aware(cls, value: datetime, zone: ZoneInfo) -> "ZonedInstant":
        return cls(instant=value.astimezone(UTC), local=value.astimezone(zone))


Converter = Callable[[re.Match, ZoneInfo, datetime], Optional[datetime]]


class Grammar(NamedTuple):
    name: str
    shape: Pattern[str]
    convert: Converter


def resolve_timezone(name: Optional[str]) -> Optional[ZoneInfo]:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return None


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _clock_in_range(hour: int, minute: int) -> bool:
    return 0 <= hour <= 23 and 0 <= minute <= 59


def _localize(value: datetime, zone: ZoneInfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value


def _anchor_today(hour: int, minute: int, zone: ZoneInfo, now: datetime) -> datetime:
    today: date = now.astimezone(zone).date()
    return datetime.combine(today, time(hour, minute), tzinfo=zone)


def _parse_iso_datetime(match: re.Match, zone: ZoneInfo, now: datetime) -> Optional[datetime]:
    if not _clock_in_range(int(match.group("hour")), int(match.group("minute"))):
        return None
    text = match.group(0)
    # "date SPACE time" is ISO once the separator is substituted
    candidate = (text[:10] + "T" + text[11:]).upper()
    try:
        return _localize(date_parser.isoparse(candidate), zone)
    except (ValueError, OverflowError):
        return None


DATE_TIME_FORMATS: Tuple[str, ...] = (
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M",
    "%d-%m-%Y %H:%M",
)


def _parse_date_time(match: re.Match, zone: ZoneInfo, now: datetime) -> Optional[datetime]:
    text = " ".join(match.group(0).split())
    for fmt in DATE_TIME_FORMATS:
        try:
            return _localize(datetime.strptime(text, fmt), zone)
        except ValueError:
            continue
    return None


def _parse_clock_12h(match: re.Match, zone: ZoneInfo, now: datetime) -> Optional[datetime]:
    hour = int(match.group("hour"))
    minute = int(match.group("minute") or 0)
    if not 1 <= hour <= 12 or not 0 <= minute <= 59:
        return None
    hour = hour % 12
    if match.group("meridiem").upper() == "P":
        hour += 12
    return _anchor_today(hour, minute, zone, now)


def _parse_clock_24h(match: re.Match, zone: ZoneInfo, now: datetime) -> Optional[datetime]:
    hour = int(match.group("hour"))
    minute = int(match.group("minute") or 0)
    if not _clock_in_range(hour, minute):
        return None
    return _anchor_today(hour, minute, zone, now)


def _parse_iso_fallback(match: re.Match, zone: ZoneInfo, now: datetime) -> Optional[datetime]:
    try:
        return _localize(date_parser.isoparse(match.string.upper()), zone)
    except (ValueError, OverflowError):
        return None


GRAMMARS: Tuple[Grammar, ...] = (
    Grammar(
        "iso_datetime",
        re.compile(
            r"^\d{4}-\d{2}-\d{2}[T ](?P<hour>\d{2}):(?P<minute>\d{2})"
            r"(?::\d{2}(?:\.\d{1,6})?)?(?:Z|[+-]\d{2}(?::?\d{2})?)?$",
            re.IGNORECASE,
        ),
        _parse_iso_datetime,
    ),
    Grammar(
        "date_time",
        re.compile(r"^(?:\d{4}[-/]\d{1,2}[-/]\d{1,2}|\d{1,2}-\d{1,2}-\d{4})\s+\d{1,2}:\d{2}$"),
        _parse_date_time,
    ),
    Grammar(
        "clock_12h",
        re.compile(
            r"^(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?\s*(?P<meridiem>[AP])\.?M\.?$",
            re.IGNORECASE,
        ),
        _parse_clock_12h,
    ),
    Grammar(
        "clock_24h",
        re.compile(r"^(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?$"),
        _parse_clock_24h,
    ),
    Grammar(
        "iso_fallback",
        re.compile(r"^\d{4}-?\d{2}"),
        _parse_iso_fallback,
    ),
)


def matching_grammars(
    raw: str, timezone_name: str = "UTC", now: Optional[datetime] = None
) -> List[Tuple[str, Optional[datetime]]]:
    """(grammar name, UTC instant or None) for every grammar whose shape matches."""
    zone = resolve_timezone(timezone_name)
    if zone is None:
        return []
    text = raw.strip()
    now = now or datetime.now(UTC)
    results = []
    for grammar in GRAMMARS:
        match = grammar.shape.match(text)
        if match is None:
            continue
        value = grammar.convert(match, zone, now)
        try:
            instant = value.astimezone(UTC) if value else None
        except (OverflowError, ValueError):
            instant = None
        results.append((grammar.name, instant))
    return results


def parse_flexible_datetime(
    raw: Optional[str], timezone_name: Optional[str] = "UTC", now: Optional[datetime] = None
) -> Optional[ZonedInstant]:
    """Parse ``raw`` in ``timezone_name``; returns None when no grammar accepts it."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    zone = resolve_timezone(timezone_name)
    if zone is None:
        logger.warning("Unknown timezone %r", timezone_name)
        return None

    text = raw.strip()
    now = now or datetime.now(UTC)
    for grammar in GRAMMARS:
        match = grammar.shape.match(text)
        if match is None:
            continue
        value = grammar.convert(match, zone, now)
        if value is None:
            logger.debug("Input %r matched %s but is not a valid time", text, grammar.name)
            return None
        try:
            return ZonedInstant.from_aware(value, zone)
        except (OverflowError, ValueError):
            # Representable locally but not in UTC (or vice versa), near year 1 or 9999
            logger.debug("Input %r is out of the representable range", text)
            return None
    return None
