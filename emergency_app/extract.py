import logging
import re
from typing import Optional

from .models import Coordinates

logger = logging.getLogger(__name__)

DEFAULT_DISTRICT = "Lima"

# the portal embeds "(-12.0828,-77.0513)" in the address text
_COORDS = re.compile(r"\(\s*(-?\d+\.\d+)\s*,\s*(-?\d+\.\d+)\s*\)")


def extract_coordinates(text: str) -> Optional[Coordinates]:
    m = _COORDS.search(text or "")
    if not m:
        return None
    lat, lon = float(m.group(1)), float(m.group(2))
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        logger.warning(f"[Extract] coordinates out of range in {text!r}; ignoring")
        return None
    return Coordinates(lat=lat, lon=lon)


def extract_district(address: str, default: str = DEFAULT_DISTRICT) -> str:
    """District is whatever follows the last ' - ' style separator."""
    # drop the coordinate group first, its minus signs are not separators
    cleaned = _COORDS.sub(" ", address or "")
    parts = cleaned.split("-")
    if len(parts) > 1:
        district = parts[-1].strip()
        if district:
            return district
    return default
