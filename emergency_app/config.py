import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel

DISPATCH_URL = "https://sgonorte.bomberosperu.gob.pe/24horas"
DISPATCH_REFERER = "https://sgonorte.bomberosperu.gob.pe/"
GEO_FEATURE_URL = (
    "https://geosinpad.indeci.gob.pe/indeci/rest/services/Emergencias/"
    "EMERGENCIAS_SINPAD/FeatureServer/0/query"
)
GEO_FEATURE_REFERER = "https://geosinpad.indeci.gob.pe"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _getenv_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, default))
    except Exception:
        return default


def _getenv_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except Exception:
        return default


def _getenv_list(key: str, default: List[str]) -> List[str]:
    val = os.getenv(key)
    if not val:
        return list(default)
    return [x.strip().lower() for x in val.split(",") if x.strip()]


class Settings(BaseModel):
    dispatch_url: str = DISPATCH_URL
    dispatch_referer: str = DISPATCH_REFERER
    geo_feature_url: str = GEO_FEATURE_URL
    geo_feature_referer: str = GEO_FEATURE_REFERER
    user_agent: str = USER_AGENT
    proxy_file: str = "utils/proxies.txt"
    max_retries: int = 5
    backoff_base_ms: int = 1000
    cache_ttl_minutes: float = 30
    request_timeout_secs: float = 15.0
    single_flight: bool = True
    log_level: str = "INFO"
    skyline_hosts: List[str] = ["www.skylinewebcams.com", "skylinewebcams.com"]


def load_settings() -> Settings:
    """Build settings from the environment (and a .env file, if present)."""
    load_dotenv()
    defaults = Settings()
    return Settings(
        dispatch_url=os.getenv("DISPATCH_URL", defaults.dispatch_url),
        dispatch_referer=os.getenv("DISPATCH_REFERER", defaults.dispatch_referer),
        geo_feature_url=os.getenv("GEO_FEATURE_URL", defaults.geo_feature_url),
        geo_feature_referer=os.getenv("GEO_FEATURE_REFERER", defaults.geo_feature_referer),
        user_agent=os.getenv("USER_AGENT", defaults.user_agent),
        proxy_file=os.getenv("PROXY_FILE", defaults.proxy_file),
        max_retries=max(1, _getenv_int("MAX_RETRIES", defaults.max_retries)),
        backoff_base_ms=max(0, _getenv_int("BACKOFF_BASE_MS", defaults.backoff_base_ms)),
        cache_ttl_minutes=_getenv_float("CACHE_TTL_MINUTES", defaults.cache_ttl_minutes),
        request_timeout_secs=_getenv_float("REQUEST_TIMEOUT_SECS", defaults.request_timeout_secs),
        single_flight=_getenv_int("SINGLE_FLIGHT", 1) != 0,
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        skyline_hosts=_getenv_list("SKYLINE_HOSTS", defaults.skyline_hosts),
    )
