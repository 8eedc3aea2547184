"""Per-source, process-lifetime cache with fresh → stale → seed degradation.

States: no entry (empty), fresh (age < ttl) and stale (age >= ttl). Staleness
is only ever decided on read; nothing expires in the background.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, List, NamedTuple, Optional, Sequence

from .dates import utc_now
from .models import CacheEntry, EmergencyRecord

logger = logging.getLogger(__name__)

Fetch = Callable[[], Awaitable[Sequence[EmergencyRecord]]]
Clock = Callable[[], datetime]


class CacheStatus(str, Enum):
    FRESH = "fresh"            # just fetched
    CACHED = "cache"           # served from a fresh entry
    EXPIRED = "expired-cache"  # refetch failed, stale entry served
    MOCK = "mock"              # nothing real available, seed served
    EMPTY = "empty"            # nothing at all


class CacheRead(NamedTuple):
    status: CacheStatus
    records: List[EmergencyRecord]
    timestamp: datetime
    error: Optional[str] = None
    age: Optional[timedelta] = None

    @property
    def age_minutes(self) -> Optional[int]:
        if self.age is None:
            return None
        return int(self.age.total_seconds() // 60)


class TimeBoxedCache:
    def __init__(
        self,
        name: str,
        fetch: Fetch,
        ttl: timedelta = timedelta(minutes=30),
        clock: Clock = utc_now,
        seed: Optional[Callable[[], Sequence[EmergencyRecord]]] = None,
        single_flight: bool = True,
    ):
        self.name = name
        self._fetch = fetch
        self.ttl = ttl
        self._clock = clock
        self._seed = seed
        self._single_flight = single_flight
        self._inflight: Optional["asyncio.Future[CacheRead]"] = None
        self._entry: Optional[CacheEntry] = None

    @property
    def entry(self) -> Optional[CacheEntry]:
        return self._entry

    def is_fresh(self, now: Optional[datetime] = None) -> bool:
        entry = self._entry
        if entry is None:
            return False
        now = now or self._clock()
        return now - entry.fetched_at < self.ttl

    def _from_entry(self, status: CacheStatus, now: datetime, error: Optional[str] = None) -> CacheRead:
        entry = self._entry
        return CacheRead(status, list(entry.data), entry.fetched_at, error, now - entry.fetched_at)

    async def get_data(self) -> CacheRead:
        now = self._clock()
        if self.is_fresh(now):
            read = self._from_entry(CacheStatus.CACHED, now)
            logger.info(f"[Cache] {self.name}: serving cached data ({read.age_minutes} min old)")
            return read

        if not self._single_flight:
            return await self._refresh()

        # concurrent readers share one refresh and its outcome, success or not
        task = self._inflight
        if task is None:
            task = asyncio.ensure_future(self._refresh())
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    def _clear_inflight(self, task: "asyncio.Future[CacheRead]") -> None:
        if self._inflight is task:
            self._inflight = None

    async def _refresh(self) -> CacheRead:
        logger.info(f"[Cache] {self.name}: expired or empty, fetching fresh data")
        error: Optional[str] = None
        records: Sequence[EmergencyRecord] = ()
        try:
            records = await self._fetch()
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"[Cache] {self.name}: fetch failed: {error}")

        now = self._clock()
        if records:
            self._entry = CacheEntry(data=tuple(records), fetched_at=now)
            logger.info(f"[Cache] {self.name}: stored {len(records)} records (valid {self.ttl})")
            return CacheRead(CacheStatus.FRESH, list(records), now)

        if self._entry is not None:
            logger.warning(f"[Cache] {self.name}: serving expired cache as fallback")
            return self._from_entry(CacheStatus.EXPIRED, now, error)

        if self._seed is not None:
            logger.warning(f"[Cache] {self.name}: no real data, serving seed dataset")
            return CacheRead(CacheStatus.MOCK, list(self._seed()), now, error)

        return CacheRead(CacheStatus.EMPTY, [], now, error or "No data available")
