from typing import Literal, Optional


class IngestionError(Exception):
    """Base for upstream ingestion failures."""


class TransportError(IngestionError):
    """Upstream answered with a non-2xx status."""

    def __init__(self, status_code: int, url: str = ""):
        super().__init__(f"HTTP {status_code} from {url}".strip())
        self.status_code = status_code
        self.url = url


class EmptyResultError(IngestionError):
    """Upstream answered 2xx but nothing could be parsed from it."""


class RetryExhaustedError(IngestionError):
    """Every attempt failed; `kind` says whether any attempt ever got a 2xx."""

    def __init__(self, kind: Literal["transport", "empty"], attempts: int, last_status: Optional[int] = None):
        if kind == "transport":
            msg = f"Failed to fetch after {attempts} attempts: {last_status or 'no response'}"
        else:
            msg = f"No emergency data found after {attempts} attempts"
        super().__init__(msg)
        self.kind = kind
        self.attempts = attempts
        self.last_status = last_status


class GeoFeatureError(IngestionError):
    """The feature service failed or returned an ArcGIS error body."""
