import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence

from .cache import CacheRead, CacheStatus, TimeBoxedCache
from .dates import LIMA_TZ, utc_now
from .models import EmergencyRecord, FeedEnvelope

logger = logging.getLogger(__name__)

UNSPECIFIED = "Sin especificar"


def _cache_age(read: CacheRead) -> Optional[str]:
    if read.age_minutes is None:
        return None
    return f"{read.age_minutes} minutos"


def dispatch_envelope(read: CacheRead) -> FeedEnvelope:
    """Envelope for the dispatch feed; it always reports success."""
    status = read.status
    if status == CacheStatus.FRESH:
        source, age = "real", None
    elif status == CacheStatus.CACHED:
        source, age = "cache", _cache_age(read)
    elif status == CacheStatus.EXPIRED:
        source, age = "cache (expired, fallback)", _cache_age(read)
    elif status == CacheStatus.MOCK:
        source, age = ("mock (fallback)" if read.error else "mock"), None
    else:
        return FeedEnvelope(success=False, count=0, data=[], error=read.error)

    return FeedEnvelope(
        success=True,
        count=len(read.records),
        data=read.records,
        source=source,
        cache_age=age,
        timestamp=read.timestamp,
        error=read.error if status in (CacheStatus.EXPIRED, CacheStatus.MOCK) else None,
    )


def disaster_envelope(read: CacheRead) -> FeedEnvelope:
    """Envelope for the disaster feed; success=false only when nothing exists."""
    status = read.status
    if status == CacheStatus.FRESH:
        source, age = "real", None
    elif status == CacheStatus.CACHED:
        source, age = "cache", _cache_age(read)
    elif status == CacheStatus.EXPIRED:
        source, age = ("expired-cache-fallback" if read.error else "expired-cache"), None
    elif status == CacheStatus.MOCK:
        source, age = "mock", None
    else:
        return FeedEnvelope(success=False, count=0, data=[], error=read.error)

    return FeedEnvelope(
        success=True,
        count=len(read.records),
        data=read.records,
        source=source,
        cache_age=age,
        timestamp=read.timestamp,
    )


# =========================
# Filters / stats
# =========================

def filter_by_types(records: Iterable[EmergencyRecord], types: Sequence[str]) -> List[EmergencyRecord]:
    records = list(records)
    if not types:
        return records
    wanted = {t.upper() for t in types}
    return [r for r in records if r.classified_type.upper() in wanted]


def filter_by_date_range(
    records: Iterable[EmergencyRecord], start: Optional[datetime] = None, end: Optional[datetime] = None
) -> List[EmergencyRecord]:
    out = []
    for r in records:
        if start is not None and r.occurred_at < start:
            continue
        if end is not None and r.occurred_at > end:
            continue
        out.append(r)
    return out


def emergency_stats(records: Iterable[EmergencyRecord]) -> Dict[str, Any]:
    by_type: Counter = Counter()
    by_region: Counter = Counter()
    by_month: Counter = Counter()
    total = 0
    for r in records:
        total += 1
        by_type[r.classified_type] += 1
        by_region[r.location.region or UNSPECIFIED] += 1
        by_month[r.occurred_at.astimezone(LIMA_TZ).strftime("%Y-%m")] += 1
    return {
        "total": total,
        "by_type": dict(by_type),
        "by_region": dict(by_region),
        "by_month": dict(sorted(by_month.items())),
    }


# =========================
# Combined feed
# =========================

class CombinedRead(NamedTuple):
    dispatch: FeedEnvelope
    disaster: FeedEnvelope

    @property
    def records(self) -> List[EmergencyRecord]:
        out: List[EmergencyRecord] = []
        for env in (self.dispatch, self.disaster):
            if env.success:
                out.extend(env.data)
        return out

    @property
    def sources(self) -> Dict[str, Optional[str]]:
        return {"dispatch": self.dispatch.source, "disaster": self.disaster.source}


async def read_both(dispatch: TimeBoxedCache, disaster: TimeBoxedCache) -> CombinedRead:
    """Read both caches concurrently and wait for both."""
    dispatch_read, disaster_read = await asyncio.gather(dispatch.get_data(), disaster.get_data())
    return CombinedRead(dispatch_envelope(dispatch_read), disaster_envelope(disaster_read))


async def combined_feed(
    dispatch: TimeBoxedCache,
    disaster: TimeBoxedCache,
    types: Sequence[str] = (),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Both sources in one list, dispatch records first."""
    both = await read_both(dispatch, disaster)
    d_count = both.dispatch.count if both.dispatch.success else 0
    g_count = both.disaster.count if both.disaster.success else 0
    records = filter_by_date_range(filter_by_types(both.records, types), start, end)
    logger.info(f"[Feed] total {len(records)} (dispatch {d_count}, disaster {g_count}) after filters")

    return {
        "success": True,
        "count": len(records),
        "data": [r.model_dump(mode="json") for r in records],
        "counts": {"dispatch": d_count, "disaster": g_count},
        "sources": both.sources,
        "timestamp": utc_now().isoformat(),
    }


async def combined_stats(dispatch: TimeBoxedCache, disaster: TimeBoxedCache) -> Dict[str, Any]:
    both = await read_both(dispatch, disaster)
    return {**emergency_stats(both.records), "sources": both.sources}
