"""
Incident store adapters.

`IncidentStore` is the persistence boundary the lifecycle, query and analytics
layers are written against. Two implementations ship with the service:

- `PostgresIncidentStore`: asyncpg-backed, geo radius computed in SQL.
- `MemoryIncidentStore`: process-local store used for tests and local runs.

Status changes go through `update(id, expected_status, patch)`, a
compare-and-swap on the status column, so two concurrent transitions on the
same incident cannot both apply.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Tuple

from modules.shared.db import execute_query
from modules.shared.utils import haversine, utcnow
from .models import Incident, IncidentStatus, IncidentType, Location

logger = logging.getLogger("incidents.store")


@dataclass(frozen=True)
class GeoFilter:
    latitude: float
    longitude: float
    radius_km: float


@dataclass(frozen=True)
class IncidentFilter:
    """Typed incident filter; every populated field is ANDed."""
    status: Optional[IncidentStatus] = None
    type: Optional[IncidentType] = None
    search: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    reported_by: Optional[str] = None
    verified_by: Optional[str] = None
    geo: Optional[GeoFilter] = None
    has_verified_at: Optional[bool] = None


class SortField(str, Enum):
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    VERIFIED_AT = "verified_at"
    RESOLVED_AT = "resolved_at"
    TYPE = "type"
    STATUS = "status"
    DISTANCE = "distance"


@dataclass(frozen=True)
class SortSpec:
    field: SortField = SortField.CREATED_AT
    descending: bool = True


class UpdateOutcome(str, Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class UpdateResult(NamedTuple):
    outcome: UpdateOutcome
    incident: Optional[Incident] = None


class LatencyTotals(NamedTuple):
    """Sum of (verified_at - created_at) in seconds over `count` reviewed incidents."""
    total_seconds: float = 0.0
    count: int = 0


GROUP_KEYS = ("type", "status", "reported_by", "year", "month", "day", "iso_year", "iso_week")
STATUS_VALUES = tuple(s.value for s in IncidentStatus)


@dataclass(frozen=True)
class GroupSpec:
    """
    Grouped-count request. Each output record holds the key fields plus
    `count` and one count per status value (`reported`, `verified`, ...).
    Date keys are taken from `created_at` in UTC.
    """
    keys: Tuple[str, ...] = ()
    filter: IncidentFilter = IncidentFilter()

    def __post_init__(self):
        unknown = [k for k in self.keys if k not in GROUP_KEYS]
        if unknown:
            raise ValueError(f"Unknown group keys: {unknown}")


class IncidentStore(ABC):

    @abstractmethod
    async def insert(self, incident: Incident) -> str:
        ...

    @abstractmethod
    async def get_by_id(self, incident_id: str) -> Optional[Incident]:
        ...

    @abstractmethod
    async def find(
        self,
        filter: IncidentFilter,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Incident]:
        ...

    @abstractmethod
    async def count(self, filter: IncidentFilter) -> int:
        ...

    @abstractmethod
    async def update(
        self, incident_id: str, expected_status: Optional[IncidentStatus], patch: dict
    ) -> UpdateResult:
        ...

    @abstractmethod
    async def delete(
        self, incident_id: str, expected_status: Optional[IncidentStatus] = None
    ) -> UpdateOutcome:
        ...

    @abstractmethod
    async def aggregate(self, spec: GroupSpec) -> List[dict]:
        ...

    @abstractmethod
    async def verification_latency(self, filter: IncidentFilter = IncidentFilter()) -> LatencyTotals:
        ...


# -----------------------
# PostgreSQL
# -----------------------

_SORT_COLUMNS = {
    SortField.CREATED_AT: "created_at",
    SortField.UPDATED_AT: "updated_at",
    SortField.VERIFIED_AT: "verified_at",
    SortField.RESOLVED_AT: "resolved_at",
    SortField.TYPE: "type",
    SortField.STATUS: "status",
}

_GROUP_EXPRESSIONS = {
    "type": "type",
    "status": "status",
    "reported_by": "reported_by",
    "year": "EXTRACT(YEAR FROM created_at AT TIME ZONE 'UTC')::int",
    "month": "EXTRACT(MONTH FROM created_at AT TIME ZONE 'UTC')::int",
    "day": "EXTRACT(DAY FROM created_at AT TIME ZONE 'UTC')::int",
    "iso_year": "EXTRACT(ISOYEAR FROM created_at AT TIME ZONE 'UTC')::int",
    "iso_week": "EXTRACT(WEEK FROM created_at AT TIME ZONE 'UTC')::int",
}

# One degree of latitude is at least this many km along a great circle.
_KM_PER_DEGREE_LAT = 111.19


def _distance_sql(lat_ref: str, lon_ref: str) -> str:
    return (
        "(6371.0 * 2 * ASIN(SQRT(LEAST(1.0, "
        f"POWER(SIN(RADIANS(location_lat - {lat_ref}) / 2), 2) "
        f"+ COS(RADIANS({lat_ref})) * COS(RADIANS(location_lat)) "
        f"* POWER(SIN(RADIANS(location_lon - {lon_ref}) / 2), 2)))))"
    )


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _build_where(filter: IncidentFilter, params: list) -> Tuple[str, Optional[str]]:
    """Return (WHERE clause, distance expression or None), appending to params."""
    conditions = []

    def add(value) -> str:
        params.append(value)
        return f"${len(params)}"

    if filter.status is not None:
        conditions.append(f"status = {add(filter.status.value)}")
    if filter.type is not None:
        conditions.append(f"type = {add(filter.type.value)}")
    if filter.search:
        conditions.append(f"description ILIKE {add('%' + _escape_like(filter.search) + '%')} ESCAPE '\\'")
    if filter.start_date is not None:
        conditions.append(f"created_at >= {add(filter.start_date)}")
    if filter.end_date is not None:
        conditions.append(f"created_at <= {add(filter.end_date)}")
    if filter.reported_by is not None:
        conditions.append(f"reported_by = {add(filter.reported_by)}")
    if filter.verified_by is not None:
        conditions.append(f"verified_by = {add(filter.verified_by)}")
    if filter.has_verified_at is not None:
        conditions.append("verified_at IS NOT NULL" if filter.has_verified_at else "verified_at IS NULL")

    distance = None
    if filter.geo is not None:
        geo = filter.geo
        lat_ref = add(float(geo.latitude))
        lon_ref = add(float(geo.longitude))
        distance = _distance_sql(f"{lat_ref}::double precision", f"{lon_ref}::double precision")
        # Latitude band lets the (lat, lon) index prune before the exact distance check
        band = geo.radius_km / _KM_PER_DEGREE_LAT + 1e-6
        conditions.append(f"location_lat BETWEEN {add(geo.latitude - band)} AND {add(geo.latitude + band)}")
        conditions.append(f"{distance} <= {add(float(geo.radius_km))}")

    where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
    return where, distance


def _row_to_incident(row) -> Incident:
    return Incident(
        id=row["id"],
        type=row["type"],
        description=row["description"],
        location=Location(
            coordinates=[row["location_lon"], row["location_lat"]],
            address=row["location_address"] or "",
        ),
        images=list(row["images"] or []),
        status=row["status"],
        reported_by=row["reported_by"],
        verified_by=row["verified_by"],
        verified_at=row["verified_at"],
        resolved_at=row["resolved_at"],
        rejection_reason=row["rejection_reason"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _patch_columns(patch: dict) -> Dict[str, object]:
    columns = {}
    for field, value in patch.items():
        if field == "location":
            columns["location_lon"] = value.longitude
            columns["location_lat"] = value.latitude
            columns["location_address"] = value.address
        elif isinstance(value, Enum):
            columns[field] = value.value
        elif field == "images":
            columns[field] = list(value)
        else:
            columns[field] = value
    return columns


class PostgresIncidentStore(IncidentStore):

    async def insert(self, incident: Incident) -> str:
        query = """
        INSERT INTO incidents
        (id, type, description, location_lon, location_lat, location_address, images,
         status, reported_by, verified_by, verified_at, resolved_at, rejection_reason,
         created_at, updated_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13,
                COALESCE($14, NOW()), COALESCE($14, NOW()))
        RETURNING id
        """
        params = (
            incident.id,
            incident.type.value,
            incident.description,
            incident.location.longitude,
            incident.location.latitude,
            incident.location.address,
            list(incident.images),
            incident.status.value,
            incident.reported_by,
            incident.verified_by,
            incident.verified_at,
            incident.resolved_at,
            incident.rejection_reason,
            incident.created_at,
        )
        row = await execute_query(query, params, fetch_one=True)
        return row["id"]

    async def get_by_id(self, incident_id: str) -> Optional[Incident]:
        row = await execute_query("SELECT * FROM incidents WHERE id = $1", (incident_id,), fetch_one=True)
        return _row_to_incident(row) if row else None

    async def find(self, filter, sort=None, skip=0, limit=None):
        params: list = []
        where, distance = _build_where(filter, params)
        sort = sort or SortSpec()
        if sort.field == SortField.DISTANCE:
            if distance is None:
                raise ValueError("Distance ordering requires a geo filter")
            order = f"{distance} ASC, id ASC"
        else:
            direction = "DESC" if sort.descending else "ASC"
            order = f"{_SORT_COLUMNS[sort.field]} {direction} NULLS LAST, id ASC"
        query = f"SELECT * FROM incidents{where} ORDER BY {order}"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        if skip:
            params.append(skip)
            query += f" OFFSET ${len(params)}"
        rows = await execute_query(query, params)
        return [_row_to_incident(r) for r in rows]

    async def count(self, filter):
        params: list = []
        where, _ = _build_where(filter, params)
        row = await execute_query(f"SELECT COUNT(*) AS total FROM incidents{where}", params, fetch_one=True)
        return row["total"] if row else 0

    async def update(self, incident_id, expected_status, patch):
        columns = _patch_columns(patch)
        params: list = [incident_id]
        assignments = []
        for column, value in columns.items():
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")
        assignments.append("updated_at = NOW()")
        query = f"UPDATE incidents SET {', '.join(assignments)} WHERE id = $1"
        if expected_status is not None:
            params.append(expected_status.value)
            query += f" AND status = ${len(params)}"
        query += " RETURNING *"
        row = await execute_query(query, params, fetch_one=True)
        if row:
            return UpdateResult(UpdateOutcome.SUCCESS, _row_to_incident(row))
        return UpdateResult(await self._miss_outcome(incident_id))

    async def delete(self, incident_id, expected_status=None):
        params: list = [incident_id]
        query = "DELETE FROM incidents WHERE id = $1"
        if expected_status is not None:
            params.append(expected_status.value)
            query += " AND status = $2"
        row = await execute_query(query + " RETURNING id", params, fetch_one=True)
        if row:
            return UpdateOutcome.SUCCESS
        return await self._miss_outcome(incident_id)

    async def aggregate(self, spec):
        params: list = []
        where, _ = _build_where(spec.filter, params)
        selects = [f"{_GROUP_EXPRESSIONS[k]} AS {k}" for k in spec.keys]
        selects.append("COUNT(*) AS count")
        for status in STATUS_VALUES:
            selects.append(f"COUNT(*) FILTER (WHERE status = '{status}') AS {status}")
        query = f"SELECT {', '.join(selects)} FROM incidents{where}"
        if spec.keys:
            query += " GROUP BY " + ", ".join(str(i + 1) for i in range(len(spec.keys)))
        rows = await execute_query(query, params)
        return [dict(r) for r in rows]

    async def verification_latency(self, filter=IncidentFilter()):
        params: list = []
        where, _ = _build_where(filter, params)
        where = (where + " AND" if where else " WHERE") + " verified_at IS NOT NULL"
        row = await execute_query(
            "SELECT COALESCE(SUM(EXTRACT(EPOCH FROM verified_at - created_at)), 0)::float8 AS total_seconds, "
            f"COUNT(*) AS reviewed FROM incidents{where}",
            params,
            fetch_one=True,
        )
        if not row:
            return LatencyTotals()
        return LatencyTotals(float(row["total_seconds"]), row["reviewed"])

    async def _miss_outcome(self, incident_id: str) -> UpdateOutcome:
        exists = await execute_query("SELECT 1 FROM incidents WHERE id = $1", (incident_id,), fetch_one=True)
        return UpdateOutcome.CONFLICT if exists else UpdateOutcome.NOT_FOUND


# -----------------------
# In-memory
# -----------------------

def _matches(incident: Incident, filter: IncidentFilter) -> bool:
    if filter.status is not None and incident.status != filter.status:
        return False
    if filter.type is not None and incident.type != filter.type:
        return False
    if filter.search and filter.search.lower() not in incident.description.lower():
        return False
    if filter.start_date is not None and incident.created_at < filter.start_date:
        return False
    if filter.end_date is not None and incident.created_at > filter.end_date:
        return False
    if filter.reported_by is not None and incident.reported_by != filter.reported_by:
        return False
    if filter.verified_by is not None and incident.verified_by != filter.verified_by:
        return False
    if filter.has_verified_at is not None and (incident.verified_at is not None) != filter.has_verified_at:
        return False
    if filter.geo is not None and _distance(incident, filter.geo) > filter.geo.radius_km:
        return False
    return True


def _distance(incident: Incident, geo: GeoFilter) -> float:
    return haversine(geo.latitude, geo.longitude, incident.location.latitude, incident.location.longitude)


def _sort_value(incident: Incident, field: SortField):
    value = getattr(incident, field.value)
    return value.value if isinstance(value, Enum) else value


def _group_value(incident: Incident, key: str):
    created = incident.created_at
    if key == "type":
        return incident.type.value
    if key == "status":
        return incident.status.value
    if key == "reported_by":
        return incident.reported_by
    if key in ("iso_year", "iso_week"):
        iso_year, iso_week, _ = created.isocalendar()
        return iso_year if key == "iso_year" else iso_week
    return getattr(created, key)


class MemoryIncidentStore(IncidentStore):
    """
    Dict-backed store. Records are replaced wholesale on every write and
    copies are handed out, so readers never observe a half-applied patch.
    """

    def __init__(self):
        self._records: Dict[str, Incident] = {}
        self._lock = asyncio.Lock()

    async def insert(self, incident):
        async with self._lock:
            now = utcnow()
            created = incident.created_at or now
            stored = incident.model_copy(
                update={"created_at": created, "updated_at": incident.updated_at or created},
                deep=True,
            )
            self._records[stored.id] = stored
            return stored.id

    async def get_by_id(self, incident_id):
        incident = self._records.get(incident_id)
        return incident.model_copy(deep=True) if incident else None

    async def find(self, filter, sort=None, skip=0, limit=None):
        matched = self._select(filter)
        sort = sort or SortSpec()
        # Secondary order on id keeps pages stable across calls
        matched.sort(key=lambda i: i.id)
        if sort.field == SortField.DISTANCE:
            if filter.geo is None:
                raise ValueError("Distance ordering requires a geo filter")
            matched.sort(key=lambda i: _distance(i, filter.geo))
        else:
            present = [i for i in matched if _sort_value(i, sort.field) is not None]
            missing = [i for i in matched if _sort_value(i, sort.field) is None]
            present.sort(key=lambda i: _sort_value(i, sort.field), reverse=sort.descending)
            matched = present + missing
        end = None if limit is None else skip + limit
        return [i.model_copy(deep=True) for i in matched[skip:end]]

    async def count(self, filter):
        return len(self._select(filter))

    async def update(self, incident_id, expected_status, patch):
        async with self._lock:
            current = self._records.get(incident_id)
            if current is None:
                return UpdateResult(UpdateOutcome.NOT_FOUND)
            if expected_status is not None and current.status != expected_status:
                return UpdateResult(UpdateOutcome.CONFLICT)
            updated = current.model_copy(update={**patch, "updated_at": utcnow()}, deep=True)
            self._records[incident_id] = updated
            return UpdateResult(UpdateOutcome.SUCCESS, updated.model_copy(deep=True))

    async def delete(self, incident_id, expected_status=None):
        async with self._lock:
            current = self._records.get(incident_id)
            if current is None:
                return UpdateOutcome.NOT_FOUND
            if expected_status is not None and current.status != expected_status:
                return UpdateOutcome.CONFLICT
            del self._records[incident_id]
            return UpdateOutcome.SUCCESS

    async def aggregate(self, spec):
        groups: Dict[tuple, dict] = {}
        for incident in self._select(spec.filter):
            key = tuple(_group_value(incident, k) for k in spec.keys)
            record = groups.get(key)
            if record is None:
                record = dict(zip(spec.keys, key))
                record["count"] = 0
                record.update({status: 0 for status in STATUS_VALUES})
                groups[key] = record
            record["count"] += 1
            record[incident.status.value] += 1
        if not spec.keys and not groups:
            # Mirrors an ungrouped SQL COUNT over zero rows
            return [dict(count=0, **{status: 0 for status in STATUS_VALUES})]
        return list(groups.values())

    async def verification_latency(self, filter=IncidentFilter()):
        totals = LatencyTotals()
        for incident in self._select(filter):
            if incident.verified_at is None:
                continue
            elapsed = (incident.verified_at - incident.created_at).total_seconds()
            totals = LatencyTotals(totals.total_seconds + elapsed, totals.count + 1)
        return totals

    def _select(self, filter: IncidentFilter) -> List[Incident]:
        return [i for i in list(self._records.values()) if _matches(i, filter)]

    def __len__(self) -> int:
        return len(self._records)
