"""
Incident query engine.

Raw request parameters are parsed once, here, into a typed `IncidentQuery`
(filter + sort + page window). Parsing is permissive: missing or garbage
numbers fall back to defaults, unknown enum values are dropped. Only
malformed coordinates, radius and dates are rejected with ValidationError.
"""

import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from enum import Enum
from typing import List, Mapping, Optional

from modules.shared.config import Settings, get_settings
from modules.shared.errors import ValidationError
from modules.shared.utils import ensure_utc, is_blank, to_float, to_int
from .models import Incident, IncidentStatus, IncidentType
from .store import GeoFilter, IncidentFilter, IncidentStore, SortField, SortSpec

logger = logging.getLogger("incidents.query")

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MAX_OFFSET = 2 ** 63 - 1

SORT_ALIASES = {
    "createdAt": SortField.CREATED_AT,
    "created_at": SortField.CREATED_AT,
    "updatedAt": SortField.UPDATED_AT,
    "updated_at": SortField.UPDATED_AT,
    "verifiedAt": SortField.VERIFIED_AT,
    "verified_at": SortField.VERIFIED_AT,
    "resolvedAt": SortField.RESOLVED_AT,
    "resolved_at": SortField.RESOLVED_AT,
    "type": SortField.TYPE,
    "status": SortField.STATUS,
}


class Visibility(str, Enum):
    PUBLIC = "public"          # verified incidents only
    OWNER = "owner"            # the caller's own reports
    PRIVILEGED = "privileged"  # moderators and admins


@dataclass(frozen=True)
class IncidentQuery:
    filter: IncidentFilter
    sort: SortSpec
    page: int
    limit: int
    filters: dict = field(default_factory=dict)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class QueryResult:
    items: List[Incident]
    page: int
    limit: int
    total: int
    filters: dict = field(default_factory=dict)

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


def _enum_or_none(enum_cls, raw, name: str):
    if is_blank(raw):
        return None
    value = str(raw).strip().lower()
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning(f"Ignoring unknown {name} filter value: {raw!r}")
        return None


def parse_date(raw, name: str, end_of_day: bool = False) -> Optional[datetime]:
    if is_blank(raw):
        return None
    text = str(raw).strip()
    try:
        if _DATE_ONLY.match(text):
            day = datetime.strptime(text, "%Y-%m-%d").date()
            return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError as e:
        raise ValidationError(f"Invalid {name}: {text}") from e


def parse_geo(params: Mapping, default_radius_km: float) -> Optional[GeoFilter]:
    raw_lat = params.get("latitude")
    raw_lon = params.get("longitude")
    if is_blank(raw_lat) and is_blank(raw_lon):
        return None
    if is_blank(raw_lat) or is_blank(raw_lon):
        raise ValidationError("latitude and longitude must be provided together")

    latitude = to_float(raw_lat)
    longitude = to_float(raw_lon)
    if latitude is None or not -90 <= latitude <= 90:
        raise ValidationError(f"Invalid latitude: {raw_lat}")
    if longitude is None or not -180 <= longitude <= 180:
        raise ValidationError(f"Invalid longitude: {raw_lon}")

    raw_radius = params.get("radiusKm", params.get("radius"))
    if is_blank(raw_radius):
        radius = default_radius_km
    else:
        radius = to_float(raw_radius)
        if radius is None or radius < 0:
            raise ValidationError(f"Invalid radius: {raw_radius}")
    return GeoFilter(latitude=latitude, longitude=longitude, radius_km=radius)


def parse_incident_query(
    params: Optional[Mapping],
    visibility: Visibility,
    actor_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> IncidentQuery:
    """Build the typed query for `visibility` from raw request parameters."""
    params = params or {}
    settings = settings or get_settings()

    status = _enum_or_none(IncidentStatus, params.get("status"), "status")
    incident_type = _enum_or_none(IncidentType, params.get("type"), "type")
    search = None if is_blank(params.get("search")) else str(params.get("search")).strip()
    start_date = parse_date(params.get("startDate"), "startDate")
    end_date = parse_date(params.get("endDate"), "endDate", end_of_day=True)
    if start_date and end_date and start_date > end_date:
        raise ValidationError("startDate must not be after endDate")
    geo = parse_geo(params, settings.DEFAULT_RADIUS_KM)

    reported_by = None if is_blank(params.get("reportedBy")) else str(params.get("reportedBy")).strip()
    verified_by = None if is_blank(params.get("verifiedBy")) else str(params.get("verifiedBy")).strip()

    if visibility == Visibility.PUBLIC:
        status = IncidentStatus.VERIFIED
        reported_by = verified_by = None
    elif visibility == Visibility.OWNER:
        if not actor_id:
            raise ValidationError("Owner queries require a caller identity")
        reported_by = actor_id
        verified_by = None

    page = to_int(params.get("page"))
    page = page if page is not None and page >= 1 else 1
    limit = to_int(params.get("limit"))
    if limit is None:
        limit = settings.DEFAULT_PAGE_LIMIT
    limit = max(1, min(limit, settings.MAX_PAGE_LIMIT))
    # OFFSET is a signed 64-bit integer in the database
    page = min(page, MAX_OFFSET // limit + 1)

    sort_field = SORT_ALIASES.get(str(params.get("sortBy") or "").strip())
    raw_order = str(params.get("sortOrder") or "").strip().lower()
    if sort_field is None and geo is not None:
        sort = SortSpec(SortField.DISTANCE, descending=False)
    else:
        sort = SortSpec(sort_field or SortField.CREATED_AT, descending=raw_order != "asc")

    incident_filter = IncidentFilter(
        status=status,
        type=incident_type,
        search=search,
        start_date=start_date,
        end_date=end_date,
        reported_by=reported_by,
        verified_by=verified_by,
        geo=geo,
    )
    filters = {
        "status": status.value if status else "all",
        "type": incident_type.value if incident_type else "all",
        "search": search,
        "dateRange": {"startDate": start_date, "endDate": end_date} if (start_date or end_date) else None,
        "location": (
            {"latitude": geo.latitude, "longitude": geo.longitude, "radiusKm": geo.radius_km} if geo else None
        ),
    }
    if visibility == Visibility.PRIVILEGED:
        filters["reportedBy"] = reported_by
        filters["verifiedBy"] = verified_by
    return IncidentQuery(filter=incident_filter, sort=sort, page=page, limit=limit, filters=filters)


class QueryEngine:

    def __init__(self, store: IncidentStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings

    async def run(self, query: IncidentQuery) -> QueryResult:
        # The page and the total use the same filter, geo radius included
        items, total = await asyncio.gather(
            self.store.find(query.filter, query.sort, query.skip, query.limit),
            self.store.count(query.filter),
        )
        logger.debug(f"Query page={query.page} limit={query.limit} returned {len(items)} of {total}")
        return QueryResult(items=items, page=query.page, limit=query.limit, total=total, filters=query.filters)

    async def search(self, params, visibility: Visibility, actor_id: Optional[str] = None) -> QueryResult:
        query = parse_incident_query(params, visibility, actor_id, self.settings)
        return await self.run(query)
