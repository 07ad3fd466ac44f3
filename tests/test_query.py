import math

import pytest

from conftest import at, make_incident
from modules.incidents.models import IncidentStatus, IncidentType
from modules.incidents.query import QueryEngine, Visibility, parse_incident_query
from modules.incidents.store import SortField
from modules.shared.errors import ValidationError

LAGOS = (3.3792, 6.5244)          # lon, lat
IKEJA = (3.3515, 6.6018)          # ~9 km north of LAGOS
ABUJA = (7.4951, 9.0579)          # ~530 km away


async def seed(store, count, **fields):
    ids = []
    for n in range(count):
        incident = make_incident(at(1 + n % 28, hour=n % 24), **fields)
        ids.append(await store.insert(incident))
    return ids


@pytest.mark.asyncio
async def test_pages_cover_total_without_duplicates(store):
    await seed(store, 23, status=IncidentStatus.VERIFIED)
    engine = QueryEngine(store)
    seen = []
    first = await engine.search({"limit": "10"}, Visibility.PUBLIC)
    assert first.total == 23
    assert first.pages == math.ceil(23 / 10) == 3
    for page in range(1, first.pages + 1):
        result = await engine.search({"limit": "10", "page": str(page)}, Visibility.PUBLIC)
        seen.extend(i.id for i in result.items)
    assert len(seen) == 23
    assert len(set(seen)) == 23


@pytest.mark.asyncio
async def test_page_past_the_end_is_empty(store):
    await seed(store, 3, status=IncidentStatus.VERIFIED)
    result = await QueryEngine(store).search({"page": "5"}, Visibility.PUBLIC)
    assert result.items == []
    assert result.total == 3


@pytest.mark.asyncio
async def test_default_sort_is_newest_first(store):
    await seed(store, 5, status=IncidentStatus.VERIFIED)
    result = await QueryEngine(store).search({}, Visibility.PUBLIC)
    created = [i.created_at for i in result.items]
    assert created == sorted(created, reverse=True)


@pytest.mark.asyncio
async def test_public_listing_only_returns_verified(store):
    await seed(store, 2, status=IncidentStatus.REPORTED)
    await seed(store, 3, status=IncidentStatus.VERIFIED)
    await seed(store, 1, status=IncidentStatus.REJECTED)
    result = await QueryEngine(store).search({"status": "reported"}, Visibility.PUBLIC)
    assert result.total == 3
    assert all(i.status == IncidentStatus.VERIFIED for i in result.items)


@pytest.mark.asyncio
async def test_owner_listing_is_scoped_to_caller(store):
    await seed(store, 2, reported_by="user-1")
    await seed(store, 4, reported_by="user-2")
    result = await QueryEngine(store).search({"reportedBy": "user-2"}, Visibility.OWNER, "user-1")
    assert result.total == 2
    assert {i.reported_by for i in result.items} == {"user-1"}


@pytest.mark.asyncio
async def test_privileged_filters_by_status_type_and_search(store):
    await store.insert(make_incident(at(1), incident_type=IncidentType.FIRE, description="Kitchen fire"))
    await store.insert(make_incident(at(2), incident_type=IncidentType.FIRE, description="Bush burning"))
    await store.insert(make_incident(at(3), incident_type=IncidentType.THEFT, description="Fire extinguisher stolen"))
    result = await QueryEngine(store).search({"type": "fire", "search": "FIRE"}, Visibility.PRIVILEGED, "mod-1")
    assert [i.description for i in result.items] == ["Kitchen fire"]


@pytest.mark.asyncio
async def test_geo_radius_includes_near_and_excludes_far(store):
    near = await store.insert(make_incident(at(1), status=IncidentStatus.VERIFIED, coordinates=IKEJA))
    far = await store.insert(make_incident(at(2), status=IncidentStatus.VERIFIED, coordinates=ABUJA))
    params = {"latitude": str(LAGOS[1]), "longitude": str(LAGOS[0]), "radiusKm": "20"}
    result = await QueryEngine(store).search(params, Visibility.PUBLIC)
    ids = [i.id for i in result.items]
    assert near in ids
    assert far not in ids
    assert result.total == 1
    assert result.filters["location"]["radiusKm"] == 20


@pytest.mark.asyncio
async def test_geo_results_are_nearest_first_and_total_matches(store):
    await store.insert(make_incident(at(1), status=IncidentStatus.VERIFIED, coordinates=IKEJA, id="b"))
    await store.insert(make_incident(at(2), status=IncidentStatus.VERIFIED, coordinates=LAGOS, id="a"))
    await store.insert(make_incident(at(3), status=IncidentStatus.VERIFIED, coordinates=ABUJA, id="c"))
    params = {"latitude": LAGOS[1], "longitude": LAGOS[0], "radius": 1000, "limit": 2}
    result = await QueryEngine(store).search(params, Visibility.PUBLIC)
    assert [i.id for i in result.items] == ["a", "b"]
    assert result.total == 3
    assert result.pages == 2


@pytest.mark.asyncio
async def test_date_range_is_inclusive_of_end_day(store):
    await store.insert(make_incident(at(4, hour=23), id="in"))
    await store.insert(make_incident(at(5, hour=0), id="out"))
    params = {"startDate": "2024-03-01", "endDate": "2024-03-04"}
    result = await QueryEngine(store).search(params, Visibility.PRIVILEGED, "mod-1")
    assert [i.id for i in result.items] == ["in"]


def test_parse_defaults():
    query = parse_incident_query({}, Visibility.PRIVILEGED)
    assert query.page == 1
    assert query.limit == 10
    assert query.sort.field == SortField.CREATED_AT
    assert query.sort.descending
    assert query.filters["status"] == "all"


def test_parse_clamps_page_and_limit():
    query = parse_incident_query({"page": "-3", "limit": "5000"}, Visibility.PRIVILEGED)
    assert query.page == 1
    assert query.limit == 100
    assert parse_incident_query({"limit": "0"}, Visibility.PRIVILEGED).limit == 1
    assert parse_incident_query({"page": "abc", "limit": "xyz"}, Visibility.PRIVILEGED).limit == 10


def test_parse_ignores_unknown_enum_values():
    query = parse_incident_query({"status": "archived", "type": "alien"}, Visibility.PRIVILEGED)
    assert query.filter.status is None
    assert query.filter.type is None


def test_parse_sort_aliases_and_fallbacks():
    query = parse_incident_query({"sortBy": "verifiedAt", "sortOrder": "asc"}, Visibility.PRIVILEGED)
    assert query.sort.field == SortField.VERIFIED_AT
    assert not query.sort.descending
    assert parse_incident_query({"sortBy": "nonsense"}, Visibility.PRIVILEGED).sort.field == SortField.CREATED_AT
    geo = parse_incident_query({"latitude": "6.5", "longitude": "3.3"}, Visibility.PUBLIC)
    assert geo.sort.field == SortField.DISTANCE
    assert geo.filter.geo.radius_km == 10


@pytest.mark.parametrize(
    "params",
    [
        {"latitude": "6.5"},
        {"longitude": "3.3"},
        {"latitude": "95", "longitude": "3.3"},
        {"latitude": "6.5", "longitude": "-181"},
        {"latitude": "north", "longitude": "3.3"},
        {"latitude": "6.5", "longitude": "3.3", "radiusKm": "-1"},
        {"startDate": "yesterday"},
        {"startDate": "2024-03-10", "endDate": "2024-03-01"},
    ],
)
def test_parse_rejects_malformed_params(params):
    with pytest.raises(ValidationError):
        parse_incident_query(params, Visibility.PUBLIC)


def test_owner_query_requires_identity():
    with pytest.raises(ValidationError):
        parse_incident_query({}, Visibility.OWNER)


def test_parse_caps_page_so_offset_fits_int64():
    query = parse_incident_query({"page": "99999999999999999999", "limit": "10"}, Visibility.PUBLIC)
    assert query.skip <= 2 ** 63 - 1
    assert query.skip == (2 ** 63 - 1) // 10 * 10


@pytest.mark.asyncio
async def test_huge_page_is_past_the_end(store):
    await seed(store, 3, status=IncidentStatus.VERIFIED)
    result = await QueryEngine(store).search({"page": "99999999999999999999"}, Visibility.PUBLIC)
    assert result.items == []
    assert result.total == 3


@pytest.mark.asyncio
async def test_zero_radius_matches_incident_at_center(store):
    center = await store.insert(make_incident(at(1), status=IncidentStatus.VERIFIED, coordinates=LAGOS))
    await store.insert(make_incident(at(2), status=IncidentStatus.VERIFIED, coordinates=IKEJA))
    params = {"latitude": LAGOS[1], "longitude": LAGOS[0], "radiusKm": "0"}
    result = await QueryEngine(store).search(params, Visibility.PUBLIC)
    assert [i.id for i in result.items] == [center]
    assert result.total == 1
