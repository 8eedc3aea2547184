import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from .assembler import combined_feed, combined_stats, disaster_envelope, dispatch_envelope
from .cache import Clock, Fetch, TimeBoxedCache
from .config import Settings, load_settings
from .dates import utc_now
from .ingestors import dispatch_source, fetch_dispatch_emergencies, fetch_geo_features
from .logging_config import setup_logging
from .seed import dispatch_seed
from .sessions import SessionError, host_allowed, negotiate_skyline_session

logger = logging.getLogger(__name__)


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def create_app(
    settings: Optional[Settings] = None,
    *,
    dispatch_fetch: Optional[Fetch] = None,
    disaster_fetch: Optional[Fetch] = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """Build the API with one cache per upstream source.

    Fetch functions can be injected; by default they hit the live portals.
    """
    settings = settings or load_settings()

    if dispatch_fetch is None:
        source = dispatch_source(settings)

        async def dispatch_fetch():
            return await fetch_dispatch_emergencies(source)

    if disaster_fetch is None:
        async def disaster_fetch():
            return await fetch_geo_features(
                settings.geo_feature_url,
                referer=settings.geo_feature_referer,
                user_agent=settings.user_agent,
                timeout_secs=settings.request_timeout_secs,
            )

    ttl = timedelta(minutes=settings.cache_ttl_minutes)
    app = FastAPI(title="Lima Emergency Feed")
    app.state.settings = settings
    app.state.dispatch_cache = TimeBoxedCache(
        "dispatch", dispatch_fetch, ttl=ttl, clock=clock, seed=dispatch_seed,
        single_flight=settings.single_flight,
    )
    app.state.disaster_cache = TimeBoxedCache(
        "disaster", disaster_fetch, ttl=ttl, clock=clock,
        single_flight=settings.single_flight,
    )

    # =========================
    # Lifecycle
    # =========================

    @app.on_event("startup")
    async def on_start():
        setup_logging(settings.log_level)
        logger.info(f"[App] started; cache ttl={ttl} retries={settings.max_retries}")

    # =========================
    # Feeds
    # =========================

    @app.get("/dispatch-emergencies")
    async def dispatch_emergencies(request: Request):
        read = await request.app.state.dispatch_cache.get_data()
        return dispatch_envelope(read).to_json()

    @app.get("/disaster-emergencies")
    async def disaster_emergencies(request: Request):
        read = await request.app.state.disaster_cache.get_data()
        return disaster_envelope(read).to_json()

    @app.get("/emergencies")
    async def emergencies(
        request: Request,
        types: List[str] = Query(default=[]),
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ):
        state = request.app.state
        return await combined_feed(
            state.dispatch_cache, state.disaster_cache, types, _as_utc(start), _as_utc(end)
        )

    @app.get("/emergencies/stats")
    async def emergencies_stats(request: Request):
        state = request.app.state
        return await combined_stats(state.dispatch_cache, state.disaster_cache)

    # =========================
    # Cameras
    # =========================

    @app.get("/skyline-session")
    async def skyline_session(request: Request, url: Optional[str] = None):
        if not url:
            return JSONResponse({"error": "URL parameter is required"}, status_code=400)
        if not host_allowed(url, settings.skyline_hosts):
            return JSONResponse({"error": "URL host is not an allowed camera provider"}, status_code=400)
        try:
            session_id = await negotiate_skyline_session(
                url,
                request.headers.get("user-agent") or settings.user_agent,
                allowed_hosts=settings.skyline_hosts,
                timeout_secs=settings.request_timeout_secs,
            )
        except SessionError as e:
            return JSONResponse({"error": str(e)}, status_code=e.status_code)
        return {"sessionId": session_id, "success": True}

    @app.get("/health")
    async def health(request: Request) -> Dict[str, Any]:
        caches = {}
        for cache in (request.app.state.dispatch_cache, request.app.state.disaster_cache):
            entry = cache.entry
            caches[cache.name] = {
                "has_entry": entry is not None,
                "fresh": cache.is_fresh(),
                "fetched_at": entry.fetched_at.isoformat() if entry else None,
            }
        return {"ok": True, "caches": caches}

    return app
