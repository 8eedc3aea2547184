import asyncio
import logging
import random
from typing import List, Optional

import httpx

from .config import Settings
from .errors import GeoFeatureError
from .fetcher import ClientFactory, Sleeper, SourceConfig, default_client_factory, fetch_with_retries
from .models import EmergencyRecord
from .parsers import parse_dispatch_table, parse_geo_features
from .proxies import load_proxies

logger = logging.getLogger(__name__)

# "since yesterday": FECHA is a date field, CURRENT_TIMESTAMP-1 is one day back
GEO_FEATURE_PARAMS = {
    "where": "FECHA>=CURRENT_TIMESTAMP-1",
    "outFields": "*",
    "returnGeometry": "true",
    "f": "json",
}


# ---- Fire department 24h dispatch table (HTML, flaky) ----
def dispatch_source(settings: Settings) -> SourceConfig:
    return SourceConfig(
        name="Dispatch",
        url=settings.dispatch_url,
        referer=settings.dispatch_referer,
        user_agent=settings.user_agent,
        max_retries=settings.max_retries,
        backoff_base_ms=settings.backoff_base_ms,
        timeout_secs=settings.request_timeout_secs,
        proxies=load_proxies(settings.proxy_file),
    )


async def fetch_dispatch_emergencies(
    config: SourceConfig,
    *,
    client_factory: ClientFactory = default_client_factory,
    sleep: Sleeper = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> List[EmergencyRecord]:
    """Live dispatch calls; retries with proxies and backoff, raises when exhausted."""
    return await fetch_with_retries(
        config, parse_dispatch_table, client_factory=client_factory, sleep=sleep, rng=rng
    )


# ---- Disaster reports (ArcGIS FeatureServer JSON, single GET) ----
async def fetch_geo_features(
    url: str,
    *,
    referer: str = "",
    user_agent: str = "",
    timeout_secs: float = 15.0,
    client: Optional[httpx.AsyncClient] = None,
) -> List[EmergencyRecord]:
    """Disaster reports since yesterday. Zero features is [], not an error."""
    headers = {"User-Agent": user_agent or "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"}
    if referer:
        headers["Referer"] = referer

    if client is None:
        async with httpx.AsyncClient(timeout=timeout_secs) as own:
            r = await own.get(url, params=GEO_FEATURE_PARAMS, headers=headers)
    else:
        r = await client.get(url, params=GEO_FEATURE_PARAMS, headers=headers)

    if not r.is_success:
        raise GeoFeatureError(f"Geo feature API error: {r.status_code}")

    try:
        payload = r.json()
    except ValueError as e:
        raise GeoFeatureError(f"Geo feature API returned invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise GeoFeatureError("Geo feature API returned an unexpected payload")
    # ArcGIS reports query errors with HTTP 200 and an "error" object
    if payload.get("error"):
        err = payload["error"]
        msg = err.get("message") if isinstance(err, dict) else err
        raise GeoFeatureError(f"Geo feature API error: {msg}")

    if not payload.get("features"):
        logger.info("[Geo] no features returned")
        return []

    records = parse_geo_features(payload)
    logger.info(f"[Geo] {len(records)} emergencies fetched")
    return records
