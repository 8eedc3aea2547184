"""Bounded-retry fetching for the unreliable dispatch portal.

Attempt 1 goes direct. Later attempts rotate through the proxy pool (without
reuse inside one call) and back off linearly: ``backoff_base_ms * attempt``.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from .config import USER_AGENT
from .errors import RetryExhaustedError
from .models import EmergencyRecord
from .proxies import ProxySelector

logger = logging.getLogger(__name__)

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"


@dataclass
class SourceConfig:
    name: str
    url: str
    referer: str
    user_agent: str = USER_AGENT
    accept: str = HTML_ACCEPT
    accept_language: str = "es-PE,es;q=0.9"
    max_retries: int = 5
    backoff_base_ms: int = 1000
    timeout_secs: float = 15.0
    proxies: Sequence[str] = field(default_factory=list)

    def headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": self.accept,
            "Accept-Language": self.accept_language,
            "Referer": self.referer,
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }


ClientFactory = Callable[[Optional[str], SourceConfig], httpx.AsyncClient]
Sleeper = Callable[[float], Awaitable[None]]
Parser = Callable[[str], List[EmergencyRecord]]


def default_client_factory(proxy: Optional[str], config: SourceConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=config.timeout_secs,
        follow_redirects=True,
        proxy=f"http://{proxy}" if proxy else None,
    )


async def fetch_with_retries(
    config: SourceConfig,
    parse: Parser,
    *,
    client_factory: ClientFactory = default_client_factory,
    sleep: Sleeper = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> List[EmergencyRecord]:
    """Fetch and parse ``config.url`` until it yields at least one record.

    Raises RetryExhaustedError once the budget is spent: kind "empty" when
    every attempt parsed an empty 2xx page, "transport" otherwise. An
    exception on the final attempt propagates unchanged.
    """
    selector = ProxySelector(config.proxies, rng=rng)
    attempts = config.max_retries
    empties = 0
    last_status: Optional[int] = None

    for attempt in range(1, attempts + 1):
        last = attempt == attempts
        proxy = selector.next() if attempt > 1 and selector else None
        if proxy:
            logger.info(f"[{config.name}] attempt {attempt}/{attempts} via proxy {proxy}")
        else:
            logger.info(f"[{config.name}] attempt {attempt}/{attempts} direct connection")

        try:
            async with client_factory(proxy, config) as client:
                r = await client.get(config.url, headers=config.headers())

            if not r.is_success:
                last_status = r.status_code
                logger.error(f"[{config.name}] attempt {attempt} failed: HTTP {r.status_code}")
            else:
                records = parse(r.text)
                if records:
                    logger.info(f"[{config.name}] {len(records)} records on attempt {attempt}")
                    return records
                empties += 1
                logger.warning(f"[{config.name}] attempt {attempt} returned no records")
        except Exception as e:
            logger.error(f"[{config.name}] error in attempt {attempt}: {e!r}")
            if last:
                raise

        if not last:
            await sleep(config.backoff_base_ms * attempt / 1000)

    kind = "empty" if empties == attempts else "transport"
    raise RetryExhaustedError(kind, attempts, last_status)
