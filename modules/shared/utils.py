import math
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Haversine formula for distance in km
def haversine(lat1, lon1, lat2, lon2):
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push `a` a hair above 1 for antipodal points
    a = min(1.0, a)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def to_int(value) -> Optional[int]:
    """Parse an integer query value, returning None when it is missing or garbage."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        try:
            parsed = float(str(value).strip())
        except ValueError:
            return None
        return int(parsed) if math.isfinite(parsed) else None


def to_float(value) -> Optional[float]:
    """Parse a finite float, returning None when it is missing or garbage."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(str(value).strip()) if not isinstance(value, (int, float)) else float(value)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
