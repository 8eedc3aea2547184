import logging
import random
import re
from pathlib import Path
from typing import Iterable, List, Optional, Set

logger = logging.getLogger(__name__)

# placeholders that free proxy lists ship with and never work
_INVALID = {"0.0.0.0:80"}
_HOST_PORT = re.compile(r"^[A-Za-z0-9.\-]+:\d{1,5}$")


def clean_proxy_lines(lines: Iterable[str]) -> List[str]:
    """Keep `host:port` entries; drop comments, placeholders and loopback."""
    out: List[str] = []
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line in _INVALID or line.startswith("127.0.0"):
            continue
        if not _HOST_PORT.match(line) or not 0 < int(line.rsplit(":", 1)[1]) <= 65535:
            logger.debug(f"[Proxy] skipping malformed entry {line!r}")
            continue
        out.append(line)
    return out


def load_proxies(path: Optional[str]) -> List[str]:
    if not path:
        return []
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"[Proxy] could not read {path} ({e}); using direct connection")
        return []
    proxies = clean_proxy_lines(content.splitlines())
    logger.info(f"[Proxy] loaded {len(proxies)} proxies from {path}")
    return proxies


class ProxySelector:
    """Hands out proxies for one retry cycle, never the same one twice."""

    def __init__(self, proxies: Iterable[str], rng: Optional[random.Random] = None):
        self.proxies = list(dict.fromkeys(proxies))
        self.used: Set[str] = set()
        self._rng = rng or random.Random()

    def __bool__(self) -> bool:
        return bool(self.proxies)

    def next(self) -> Optional[str]:
        available = [p for p in self.proxies if p not in self.used]
        if not available:
            return None
        proxy = self._rng.choice(available)
        self.used.add(proxy)
        return proxy
