import os
from datetime import datetime, timezone
from typing import Generator
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("STORE_BACKEND", "memory")

from main import app  # noqa: E402
from modules.auth.models import Identity, Role, User  # noqa: E402
from modules.auth.store import MemoryUserDirectory  # noqa: E402
from modules.auth.utils import hash_password  # noqa: E402
from modules.incidents.lifecycle import LifecycleManager  # noqa: E402
from modules.incidents.models import Incident, IncidentStatus, IncidentType, Location  # noqa: E402
from modules.incidents.store import MemoryIncidentStore  # noqa: E402
from modules.shared.deps import get_services  # noqa: E402


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def emit(self, event, incident):
        self.events.append((event, incident.id))


def report(**overrides) -> dict:
    body = {
        "type": "road_hazard",
        "description": "Large pothole on the main road",
        "location": [3.3792, 6.5244],
        "address": "Broad Street, Lagos",
    }
    body.update(overrides)
    return body


def make_incident(
    created_at: datetime,
    status: IncidentStatus = IncidentStatus.REPORTED,
    incident_type: IncidentType = IncidentType.THEFT,
    reported_by: str = "user-1",
    coordinates=(3.3792, 6.5244),
    **fields,
) -> Incident:
    return Incident(
        id=fields.pop("id", str(uuid4())),
        type=incident_type,
        description=fields.pop("description", "Phone snatched at the bus stop"),
        location=Location(coordinates=list(coordinates)),
        status=status,
        reported_by=reported_by,
        created_at=created_at,
        **fields,
    )


def at(day: int, hour: int = 12, month: int = 3, year: int = 2024) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture()
def store() -> MemoryIncidentStore:
    return MemoryIncidentStore()


@pytest.fixture()
def users() -> MemoryUserDirectory:
    return MemoryUserDirectory()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def lifecycle(store, notifier) -> LifecycleManager:
    return LifecycleManager(store, notifier)


@pytest.fixture()
def reporter() -> Identity:
    return Identity(user_id="user-1", role=Role.USER)


@pytest.fixture()
def moderator() -> Identity:
    return Identity(user_id="mod-1", role=Role.MODERATOR)


@pytest.fixture()
def client(monkeypatch) -> Generator[TestClient, None, None]:
    monkeypatch.setenv("STORE_BACKEND", "memory")
    with TestClient(app) as c:
        yield c


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def signup(client: TestClient, name: str, email: str, password: str = "secret123") -> str:
    r = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert r.status_code == 201, r.text
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["data"]["token"]


def signup_moderator(client: TestClient, email: str = "mod@example.com", password: str = "secret123") -> str:
    user = User(
        id=str(uuid4()),
        name="Moderator",
        email=email,
        role=Role.MODERATOR,
        password_hash=hash_password(password),
    )
    client.portal.call(get_services().users.create, user)
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["data"]["token"]
