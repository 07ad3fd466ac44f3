import pytest

from conftest import at, make_incident
from modules.auth.models import User
from modules.incidents.models import IncidentStatus
from modules.notifications import templates
from modules.notifications.manager import MODERATORS_TOPIC, NotificationDispatcher
from modules.notifications.utils import topic_broadcast_all, topic_for_user


class FakeConnections:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def broadcast(self, topic, message):
        if self.fail:
            raise RuntimeError("socket exploded")
        self.sent.append((topic, message["event"]))
        return 1


class FakeEmail:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send_email(self, to_email, subject, html_body, text_body):
        if self.fail:
            raise OSError("smtp unreachable")
        self.sent.append((to_email, subject))
        return True


async def _reporter(users):
    await users.create(User(id="user-1", name="Ada <script>", email="ada@example.com"))


@pytest.mark.asyncio
async def test_verified_event_reaches_reporter_moderators_and_public(users):
    await _reporter(users)
    connections, email = FakeConnections(), FakeEmail()
    dispatcher = NotificationDispatcher(users, email, connections)
    dispatcher.emit("incident.verified", make_incident(at(1), status=IncidentStatus.VERIFIED))
    await dispatcher.drain()

    topics = [t for t, _ in connections.sent]
    assert topics == [topic_for_user("user-1"), MODERATORS_TOPIC, topic_broadcast_all()]
    assert email.sent and email.sent[0][0] == "ada@example.com"


@pytest.mark.asyncio
async def test_reported_event_is_not_public(users):
    await _reporter(users)
    connections = FakeConnections()
    dispatcher = NotificationDispatcher(users, FakeEmail(), connections)
    dispatcher.emit("incident.reported", make_incident(at(1)))
    await dispatcher.drain()
    assert topic_broadcast_all() not in [t for t, _ in connections.sent]


@pytest.mark.asyncio
async def test_delivery_failures_are_swallowed(users):
    await _reporter(users)
    dispatcher = NotificationDispatcher(users, FakeEmail(fail=True), FakeConnections(fail=True))
    dispatcher.emit("incident.rejected", make_incident(at(1), status=IncidentStatus.REJECTED))
    await dispatcher.drain()


def test_emit_without_running_loop_is_dropped(users):
    dispatcher = NotificationDispatcher(users, FakeEmail(), FakeConnections())
    dispatcher.emit("incident.reported", make_incident(at(1)))
    assert not dispatcher._pending


def test_templates_escape_user_content():
    incident = make_incident(
        at(1), status=IncidentStatus.REJECTED, rejection_reason="<b>spam</b>"
    )
    content = templates.render("incident.rejected", "Ada <script>", incident)
    assert "<script>" not in content.html
    assert "&lt;b&gt;spam&lt;/b&gt;" in content.html
    assert "spam" in content.text
    assert templates.render("incident.unknown", "Ada", incident) is None
