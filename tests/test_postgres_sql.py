"""SQL and parameters produced by the Postgres adapters, checked without a database."""

import pytest

from conftest import at
from modules.auth import store as user_store_module
from modules.auth.store import PostgresUserDirectory
from modules.incidents import store as store_module
from modules.incidents.models import IncidentStatus, IncidentType, Location
from modules.incidents.store import (
    GeoFilter,
    GroupSpec,
    IncidentFilter,
    PostgresIncidentStore,
    SortField,
    SortSpec,
    UpdateOutcome,
    _build_where,
    _patch_columns,
)


class RecordingQuery:
    """Stands in for `execute_query`; replies are consumed in order."""

    def __init__(self, *replies):
        self.calls = []
        self.replies = list(replies)

    async def __call__(self, sql, params=None, fetch_one=False):
        self.calls.append((" ".join(sql.split()), list(params or []), fetch_one))
        return self.replies.pop(0) if self.replies else ([] if not fetch_one else None)


def _row(**overrides):
    row = {
        "id": "inc-1",
        "type": "fire",
        "description": "Kitchen fire",
        "location_lon": 3.3792,
        "location_lat": 6.5244,
        "location_address": None,
        "images": None,
        "status": "verified",
        "reported_by": "user-1",
        "verified_by": "mod-1",
        "verified_at": at(2),
        "resolved_at": None,
        "rejection_reason": None,
        "created_at": at(1),
        "updated_at": at(2),
    }
    row.update(overrides)
    return row


def test_empty_filter_has_no_where():
    params = []
    where, distance = _build_where(IncidentFilter(), params)
    assert where == ""
    assert distance is None
    assert params == []


def test_scalar_filters_are_parameterised_in_order():
    params = []
    where, _ = _build_where(
        IncidentFilter(
            status=IncidentStatus.VERIFIED,
            type=IncidentType.THEFT,
            start_date=at(1),
            end_date=at(5),
            reported_by="user-1",
            verified_by="mod-1",
            has_verified_at=True,
        ),
        params,
    )
    assert where == (
        " WHERE status = $1 AND type = $2 AND created_at >= $3 AND created_at <= $4"
        " AND reported_by = $5 AND verified_by = $6 AND verified_at IS NOT NULL"
    )
    assert params == ["verified", "theft", at(1), at(5), "user-1", "mod-1"]


def test_search_escapes_like_wildcards():
    params = []
    where, _ = _build_where(IncidentFilter(search="50%_off\\"), params)
    assert where == " WHERE description ILIKE $1 ESCAPE '\\'"
    assert params == ["%50\\%\\_off\\\\%"]


def test_geo_filter_adds_latitude_band_and_distance():
    params = []
    where, distance = _build_where(IncidentFilter(geo=GeoFilter(latitude=6.5, longitude=3.3, radius_km=11.119)), params)
    assert params[:2] == [6.5, 3.3]
    low, high, radius = params[2:]
    assert low == pytest.approx(6.4, abs=1e-5)
    assert high == pytest.approx(6.6, abs=1e-5)
    assert radius == 11.119
    assert "$1::double precision" in distance
    assert "$2::double precision" in distance
    assert "location_lat BETWEEN $3 AND $4" in where
    assert where.endswith(f"{distance} <= $5")


def test_zero_radius_band_still_contains_center():
    params = []
    _build_where(IncidentFilter(geo=GeoFilter(latitude=6.5, longitude=3.3, radius_km=0)), params)
    low, high, radius = params[2:]
    assert low < 6.5 < high
    assert radius == 0.0


def test_patch_columns_flatten_location_and_enums():
    columns = _patch_columns({
        "status": IncidentStatus.REJECTED,
        "location": Location(coordinates=[3.3, 6.5], address="Marina"),
        "images": ("a.jpg",),
        "rejection_reason": "spam",
    })
    assert columns == {
        "status": "rejected",
        "location_lon": 3.3,
        "location_lat": 6.5,
        "location_address": "Marina",
        "images": ["a.jpg"],
        "rejection_reason": "spam",
    }


@pytest.mark.asyncio
async def test_update_is_keyed_on_expected_status(monkeypatch):
    query = RecordingQuery(_row(status="rejected", rejection_reason="spam"))
    monkeypatch.setattr(store_module, "execute_query", query)
    result = await PostgresIncidentStore().update(
        "inc-1", IncidentStatus.VERIFIED, {"status": IncidentStatus.REJECTED, "rejection_reason": "spam"}
    )
    sql, params, fetch_one = query.calls[0]
    assert sql == (
        "UPDATE incidents SET status = $2, rejection_reason = $3, updated_at = NOW()"
        " WHERE id = $1 AND status = $4 RETURNING *"
    )
    assert params == ["inc-1", "rejected", "spam", "verified"]
    assert fetch_one
    assert result.outcome == UpdateOutcome.SUCCESS
    assert result.incident.rejection_reason == "spam"


@pytest.mark.asyncio
async def test_update_miss_distinguishes_conflict_from_not_found(monkeypatch):
    query = RecordingQuery(None, {"?column?": 1}, None, None)
    monkeypatch.setattr(store_module, "execute_query", query)
    store = PostgresIncidentStore()
    conflict = await store.update("inc-1", IncidentStatus.REPORTED, {"status": IncidentStatus.VERIFIED})
    missing = await store.update("inc-2", IncidentStatus.REPORTED, {"status": IncidentStatus.VERIFIED})
    assert conflict.outcome == UpdateOutcome.CONFLICT
    assert missing.outcome == UpdateOutcome.NOT_FOUND
    assert query.calls[1][0] == "SELECT 1 FROM incidents WHERE id = $1"


@pytest.mark.asyncio
async def test_delete_is_keyed_on_expected_status(monkeypatch):
    query = RecordingQuery({"id": "inc-1"})
    monkeypatch.setattr(store_module, "execute_query", query)
    outcome = await PostgresIncidentStore().delete("inc-1", IncidentStatus.REPORTED)
    assert outcome == UpdateOutcome.SUCCESS
    assert query.calls[0][:2] == (
        "DELETE FROM incidents WHERE id = $1 AND status = $2 RETURNING id", ["inc-1", "reported"]
    )


@pytest.mark.asyncio
async def test_find_orders_by_distance_then_id_and_pages(monkeypatch):
    query = RecordingQuery([_row()])
    monkeypatch.setattr(store_module, "execute_query", query)
    geo = GeoFilter(latitude=6.5, longitude=3.3, radius_km=5)
    items = await PostgresIncidentStore().find(
        IncidentFilter(status=IncidentStatus.VERIFIED, geo=geo), SortSpec(SortField.DISTANCE, False), 20, 10
    )
    sql, params, _ = query.calls[0]
    assert " ASC, id ASC LIMIT $7 OFFSET $8" in sql
    assert params[-2:] == [10, 20]
    assert items[0].id == "inc-1"
    assert items[0].location.address == ""


@pytest.mark.asyncio
async def test_find_puts_nulls_last(monkeypatch):
    query = RecordingQuery([])
    monkeypatch.setattr(store_module, "execute_query", query)
    await PostgresIncidentStore().find(IncidentFilter(), SortSpec(SortField.VERIFIED_AT, True))
    assert query.calls[0][0] == "SELECT * FROM incidents ORDER BY verified_at DESC NULLS LAST, id ASC"


@pytest.mark.asyncio
async def test_count_and_find_share_the_filter(monkeypatch):
    query = RecordingQuery([], {"total": 0})
    monkeypatch.setattr(store_module, "execute_query", query)
    store = PostgresIncidentStore()
    incident_filter = IncidentFilter(type=IncidentType.FIRE, geo=GeoFilter(6.5, 3.3, 2))
    await store.find(incident_filter)
    assert await store.count(incident_filter) == 0
    find_sql, find_params, _ = query.calls[0]
    count_sql, count_params, _ = query.calls[1]
    assert find_sql.split(" WHERE ")[1].split(" ORDER BY ")[0] == count_sql.split(" WHERE ")[1]
    assert find_params == count_params


@pytest.mark.asyncio
async def test_aggregate_groups_by_ordinals_with_status_counts(monkeypatch):
    query = RecordingQuery([{"type": "fire", "count": 2, "reported": 1, "verified": 1, "rejected": 0, "resolved": 0}])
    monkeypatch.setattr(store_module, "execute_query", query)
    rows = await PostgresIncidentStore().aggregate(
        GroupSpec(keys=("type", "iso_week"), filter=IncidentFilter(start_date=at(1)))
    )
    sql, params, _ = query.calls[0]
    assert sql.startswith("SELECT type AS type, EXTRACT(WEEK FROM created_at AT TIME ZONE 'UTC')::int AS iso_week,")
    assert "COUNT(*) FILTER (WHERE status = 'resolved') AS resolved" in sql
    assert sql.endswith("FROM incidents WHERE created_at >= $1 GROUP BY 1, 2")
    assert params == [at(1)]
    assert rows[0]["count"] == 2


@pytest.mark.asyncio
async def test_verification_latency_sums_in_sql(monkeypatch):
    query = RecordingQuery({"total_seconds": 7200.0, "reviewed": 2})
    monkeypatch.setattr(store_module, "execute_query", query)
    totals = await PostgresIncidentStore().verification_latency()
    assert query.calls[0][0].endswith("FROM incidents WHERE verified_at IS NOT NULL")
    assert totals.total_seconds == 7200.0
    assert totals.count == 2


@pytest.mark.asyncio
async def test_user_directory_batches_lookups(monkeypatch):
    query = RecordingQuery([{
        "id": "user-1", "name": "Ada", "email": "ada@example.com", "role": "user",
        "is_active": True, "created_at": at(1), "password_hash": "x",
    }])
    monkeypatch.setattr(user_store_module, "execute_query", query)
    people = await PostgresUserDirectory().get_many(["user-2", "user-1", "user-1", None])
    sql, params, _ = query.calls[0]
    assert sql == "SELECT * FROM users WHERE id = ANY($1::text[])"
    assert params == [["user-1", "user-2"]]
    assert people["user-1"].name == "Ada"
    assert await PostgresUserDirectory().get_many([]) == {}
