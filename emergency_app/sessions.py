import logging
import re
from typing import Collection, List, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

_PHPSESSID = re.compile(r"PHPSESSID=([^;,\s]+)")


class SessionError(Exception):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def host_allowed(url: str, allowed_hosts) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and (parsed.hostname or "").lower() in allowed_hosts


MAX_REDIRECTS = 5


async def _follow(client: httpx.AsyncClient, url: str, headers, allowed_hosts) -> List[str]:
    """GET ``url`` hop by hop, refusing redirects that leave ``allowed_hosts``.

    Returns every Set-Cookie header seen along the way.
    """
    cookies: List[str] = []
    for _ in range(MAX_REDIRECTS + 1):
        r = await client.get(url, headers=headers, follow_redirects=False)
        cookies.extend(r.headers.get_list("set-cookie"))
        if not r.is_redirect:
            return cookies
        url = str(r.url.join(r.headers["location"]))
        if allowed_hosts is not None and not host_allowed(url, allowed_hosts):
            logger.warning(f"[Skyline] refusing redirect to {url}")
            raise SessionError("Redirect to a host that is not an allowed camera provider", 400)
    raise SessionError("Too many redirects", 502)


async def negotiate_skyline_session(
    url: str,
    user_agent: str,
    *,
    allowed_hosts: Optional[Collection[str]] = None,
    timeout_secs: float = 15.0,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Load the provider page server-side and return its PHPSESSID cookie."""
    headers = {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "es-PE,es;q=0.9,en;q=0.8",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
    }
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout_secs) as own:
                cookies = await _follow(own, url, headers, allowed_hosts)
        else:
            cookies = await _follow(client, url, headers, allowed_hosts)
    except httpx.HTTPError as e:
        logger.error(f"[Skyline] session request failed: {e!r}")
        raise SessionError(f"Failed to fetch session ID: {e}", 500) from e

    if not cookies:
        raise SessionError("No cookies found in response", 404)

    for cookie in cookies:
        m = _PHPSESSID.search(cookie)
        if m:
            return m.group(1)
    raise SessionError("PHPSESSID not found in cookies", 404)
