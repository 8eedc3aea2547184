"""Date normalization for the dispatch portal.

The portal prints local Lima time as ``DD/MM/YYYY HH:MM:SS a.m.`` (or
``p.m.``). Lima has no DST, so the offset is a fixed UTC-5.
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, NamedTuple, Optional

logger = logging.getLogger(__name__)

LIMA_TZ = timezone(timedelta(hours=-5), "PET")

_LOCAL_DATE = re.compile(
    r"(\d{2})/(\d{2})/(\d{4})\s+(\d{1,2}):(\d{2}):(\d{2})\s+([ap])\.\s?m\.",
    re.IGNORECASE,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ParsedDate(NamedTuple):
    instant: datetime  # always UTC
    is_fallback: bool
    raw: str


def parse_local_date(text: Optional[str], now: Callable[[], datetime] = utc_now) -> ParsedDate:
    """Parse a portal timestamp into a UTC instant.

    Never raises. Input that does not match (or names an impossible calendar
    date) yields ``now()`` with ``is_fallback=True``.
    """
    raw = (text or "").strip()
    m = _LOCAL_DATE.search(raw)
    if not m:
        logger.warning(f"[Dates] could not parse date {raw!r}; using now")
        return ParsedDate(now(), True, raw)

    day, month, year, hours, minutes, seconds, meridiem = m.groups()
    hour = int(hours)
    if hour > 12:
        logger.warning(f"[Dates] hour out of 12h range in {raw!r}; using now")
        return ParsedDate(now(), True, raw)

    if meridiem.lower() == "p" and hour != 12:
        hour += 12
    elif meridiem.lower() == "a" and hour == 12:
        hour = 0

    try:
        local = datetime(int(year), int(month), int(day), hour, int(minutes), int(seconds), tzinfo=LIMA_TZ)
    except ValueError as e:
        logger.warning(f"[Dates] invalid date {raw!r} ({e}); using now")
        return ParsedDate(now(), True, raw)

    return ParsedDate(local.astimezone(timezone.utc), False, raw)


def from_epoch_ms(value, now: Callable[[], datetime] = utc_now) -> ParsedDate:
    """Convert an ArcGIS epoch-milliseconds date; missing/garbage falls back to now."""
    try:
        instant = datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning(f"[Dates] bad epoch value {value!r}; using now")
        return ParsedDate(now(), True, str(value))
    return ParsedDate(instant, False, str(value))
