import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from emergency_app.app import create_app
from emergency_app.config import Settings
from emergency_app.ingestors import fetch_dispatch_emergencies
from emergency_app.models import EmergencyRecord, Location
from emergency_app.sessions import SessionError, negotiate_skyline_session

from .conftest import DISPATCH_HTML, RecordingFactory


def _disaster(rid="indeci-1", kind="SISMO", region="LIMA"):
    return EmergencyRecord(
        id=rid,
        source_reference_code=rid.upper(),
        classified_type=kind,
        location=Location(region=region),
        occurred_at=datetime(2026, 1, 12, 15, tzinfo=timezone.utc),
        source_tag="geo-feature",
    )


class Outcomes:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)

    async def __call__(self):
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(clock, dispatch_fetch=None, disaster_fetch=None):
    app = create_app(
        Settings(proxy_file=""),
        dispatch_fetch=dispatch_fetch or Outcomes(RuntimeError("down")),
        disaster_fetch=disaster_fetch or Outcomes([]),
        clock=clock,
    )
    return TestClient(app)


def test_dispatch_upstream_always_503_serves_seed(clock, sleeper, source_config):
    factory = RecordingFactory(lambda req: httpx.Response(503))

    async def dispatch_fetch():
        return await fetch_dispatch_emergencies(source_config, client_factory=factory, sleep=sleeper)

    body = _client(clock, dispatch_fetch=dispatch_fetch).get("/dispatch-emergencies").json()

    assert len(factory.requests) == 5
    assert sleeper.delays == [1.0, 2.0, 3.0, 4.0]
    assert body["success"] is True
    assert body["source"] == "mock (fallback)"
    assert body["count"] == 3 == len(body["data"])
    assert "5 attempts" in body["error"]


def test_dispatch_real_then_cache_then_expired(clock, sleeper, source_config):
    responses = iter([httpx.Response(200, text=DISPATCH_HTML)] + [httpx.Response(503)] * 5)
    factory = RecordingFactory(lambda req: next(responses))

    async def dispatch_fetch():
        return await fetch_dispatch_emergencies(source_config, client_factory=factory, sleep=sleeper)

    client = _client(clock, dispatch_fetch=dispatch_fetch)

    body = client.get("/dispatch-emergencies").json()
    assert body["source"] == "real"
    assert body["count"] == 3
    assert "cacheAge" not in body and "error" not in body
    assert body["data"][0]["location"]["district"] == "JESUS MARIA"

    clock.advance(minutes=12)
    body = client.get("/dispatch-emergencies").json()
    assert body["source"] == "cache"
    assert body["cacheAge"] == "12 minutos"

    clock.advance(minutes=20)
    body = client.get("/dispatch-emergencies").json()
    assert body["success"] is True
    assert body["source"] == "cache (expired, fallback)"
    assert body["cacheAge"] == "32 minutos"
    assert body["count"] == 3
    assert body["error"]


def test_disaster_without_any_data_reports_failure(clock):
    body = _client(clock, disaster_fetch=Outcomes([])).get("/disaster-emergencies").json()
    assert body == {"success": False, "count": 0, "data": [], "error": "No data available"}

    body = _client(clock, disaster_fetch=Outcomes(RuntimeError("boom"))).get("/disaster-emergencies").json()
    assert body["success"] is False
    assert body["error"] == "boom"


@pytest.mark.parametrize("second, expected", [([], "expired-cache"), (RuntimeError("x"), "expired-cache-fallback")])
def test_disaster_stale_fallback_tags(clock, second, expected):
    client = _client(clock, disaster_fetch=Outcomes([_disaster()], second))
    assert client.get("/disaster-emergencies").json()["source"] == "real"
    clock.advance(minutes=31)
    body = client.get("/disaster-emergencies").json()
    assert body["success"] is True
    assert body["source"] == expected
    assert body["data"][0]["id"] == "indeci-1"


def test_combined_feed_and_filters(clock):
    from emergency_app.seed import dispatch_seed

    client = _client(
        clock,
        dispatch_fetch=Outcomes(dispatch_seed()),
        disaster_fetch=Outcomes([_disaster("indeci-1", "SISMO"), _disaster("indeci-2", "HELADA", "PUNO")]),
    )
    body = client.get("/emergencies").json()
    assert body["count"] == 5
    assert body["counts"] == {"dispatch": 3, "disaster": 2}
    assert body["sources"] == {"dispatch": "real", "disaster": "real"}
    assert body["data"][0]["source_tag"] == "dispatch-table"
    assert body["data"][-1]["source_tag"] == "geo-feature"

    body = client.get("/emergencies", params={"types": ["sismo", "INCENDIO URBANO"]}).json()
    assert sorted(r["id"] for r in body["data"]) == ["2026001563", "indeci-1"]

    body = client.get("/emergencies", params={"start": "2026-01-13T00:00:00Z"}).json()
    assert {r["source_tag"] for r in body["data"]} == {"dispatch-table"}


def test_stats(clock):
    client = _client(
        clock,
        disaster_fetch=Outcomes([_disaster("indeci-1", "SISMO"), _disaster("indeci-2", "HELADA", "PUNO")]),
    )
    stats = client.get("/emergencies/stats").json()
    # dispatch side is the seed (upstream down)
    assert stats["total"] == 5
    assert stats["by_type"]["SISMO"] == 1
    assert stats["by_region"] == {"Lima": 3, "LIMA": 1, "PUNO": 1}
    assert stats["by_month"] == {"2026-01": 5}
    assert stats["sources"] == {"dispatch": "mock (fallback)", "disaster": "real"}


def test_health_reports_cache_state(clock):
    client = _client(clock, disaster_fetch=Outcomes([_disaster()]))
    client.get("/disaster-emergencies")
    caches = client.get("/health").json()["caches"]
    assert caches["disaster"]["has_entry"] is True
    assert caches["dispatch"]["has_entry"] is False


def test_skyline_session_validates_url(clock):
    client = _client(clock)
    assert client.get("/skyline-session").status_code == 400
    resp = client.get("/skyline-session", params={"url": "http://169.254.169.254/latest"})
    assert resp.status_code == 400


ALLOWED = ["www.skylinewebcams.com", "skylinewebcams.com"]


def _negotiate(handler, url="https://www.skylinewebcams.com/cam.html"):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await negotiate_skyline_session(url, "UA", allowed_hosts=ALLOWED, client=client)
    return asyncio.run(go())


def test_negotiate_skyline_session():
    headers = [("set-cookie", "lang=es; path=/"), ("set-cookie", "PHPSESSID=abc123; path=/; HttpOnly")]
    assert _negotiate(lambda req: httpx.Response(200, headers=headers)) == "abc123"

    with pytest.raises(SessionError) as exc:
        _negotiate(lambda req: httpx.Response(200))
    assert exc.value.status_code == 404

    with pytest.raises(SessionError) as exc:
        _negotiate(lambda req: httpx.Response(200, headers=[("set-cookie", "lang=es")]))
    assert exc.value.status_code == 404


def test_redirect_off_the_allowlist_is_not_followed():
    seen = []

    def handler(req):
        seen.append(str(req.url))
        return httpx.Response(302, headers={"location": "http://169.254.169.254/latest/meta-data"})

    with pytest.raises(SessionError) as exc:
        _negotiate(handler)
    assert exc.value.status_code == 400
    assert seen == ["https://www.skylinewebcams.com/cam.html"]


def test_redirect_within_allowlist_collects_cookies_from_each_hop():
    seen = []

    def handler(req):
        seen.append(req.url.host)
        if req.url.host == "skylinewebcams.com":
            return httpx.Response(301, headers=[("location", "https://www.skylinewebcams.com/es/cam.html"),
                                                ("set-cookie", "lang=es; path=/")])
        return httpx.Response(200, headers=[("set-cookie", "PHPSESSID=hop2; path=/")])

    assert _negotiate(handler, url="https://skylinewebcams.com/cam.html") == "hop2"
    assert seen == ["skylinewebcams.com", "www.skylinewebcams.com"]


def test_redirect_loop_is_cut_short():
    def handler(req):
        return httpx.Response(302, headers={"location": "/cam.html"})

    with pytest.raises(SessionError) as exc:
        _negotiate(handler)
    assert exc.value.status_code == 502


def test_skyline_session_forwards_caller_user_agent(clock, monkeypatch):
    calls = []

    async def fake_negotiate(url, user_agent, **kw):
        calls.append((url, user_agent, kw["allowed_hosts"]))
        return "sid-1"

    monkeypatch.setattr("emergency_app.app.negotiate_skyline_session", fake_negotiate)
    client = _client(clock)
    url = "https://www.skylinewebcams.com/cam.html"

    resp = client.get("/skyline-session", params={"url": url}, headers={"User-Agent": "Mozilla/Test"})
    assert resp.json() == {"sessionId": "sid-1", "success": True}
    assert calls[0][:2] == (url, "Mozilla/Test")
    assert "www.skylinewebcams.com" in calls[0][2]


def test_skyline_session_maps_session_errors_to_status(clock, monkeypatch):
    async def fake_negotiate(url, user_agent, **kw):
        raise SessionError("Redirect to a host that is not an allowed camera provider", 400)

    monkeypatch.setattr("emergency_app.app.negotiate_skyline_session", fake_negotiate)
    resp = _client(clock).get("/skyline-session", params={"url": "https://www.skylinewebcams.com/x.html"})
    assert resp.status_code == 400
    assert "allowed camera provider" in resp.json()["error"]
