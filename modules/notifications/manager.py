import asyncio
import logging
from typing import Optional, Set

from starlette.concurrency import run_in_threadpool

from modules.auth.store import UserDirectory
from modules.shared.email_service import EmailService
from . import templates
from .utils import ConnectionManager, manager, topic_broadcast_all, topic_for_user

logger = logging.getLogger(__name__)

MODERATORS_TOPIC = "role:moderators"

# Events visible to everyone; the rest only reach the reporter and moderators.
PUBLIC_EVENTS = ("incident.verified", "incident.resolved")


def event_payload(event: str, incident) -> dict:
    return {
        "event": event,
        "data": {
            "id": incident.id,
            "type": incident.type.value,
            "status": incident.status.value,
            "location": incident.location.model_dump(),
            "reportedBy": incident.reported_by,
        },
    }


class NotificationDispatcher:
    """
    Fire-and-forget delivery of incident events.

    `emit` only schedules a task on the running loop and returns; the task
    broadcasts over WebSockets and emails the reporter. Delivery errors are
    logged here and never reach the code that emitted the event.
    """

    def __init__(
        self,
        users: UserDirectory,
        email_service: Optional[EmailService] = None,
        connections: ConnectionManager = manager,
    ):
        self.users = users
        self.email_service = email_service or EmailService()
        self.connections = connections
        self._pending: Set[asyncio.Task] = set()

    def emit(self, event: str, incident) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping {event} for incident {incident.id}")
            return
        task = loop.create_task(self._deliver(event, incident))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, event: str, incident) -> None:
        try:
            await self._broadcast(event, incident)
        except Exception:
            logger.exception(f"WebSocket broadcast of {event} for incident {incident.id} failed")
        try:
            await self._send_email(event, incident)
        except Exception:
            logger.exception(f"Email for {event} on incident {incident.id} failed")

    async def _broadcast(self, event: str, incident) -> None:
        message = event_payload(event, incident)
        await self.connections.broadcast(topic_for_user(incident.reported_by), message)
        await self.connections.broadcast(MODERATORS_TOPIC, message)
        if event in PUBLIC_EVENTS:
            await self.connections.broadcast(topic_broadcast_all(), message)

    async def _send_email(self, event: str, incident) -> None:
        reporter = await self.users.get_by_id(incident.reported_by)
        if reporter is None or not reporter.email:
            logger.info(f"No email on file for reporter of incident {incident.id}, skipping {event} email")
            return
        content = templates.render(event, reporter.name, incident)
        if content is None:
            return
        await run_in_threadpool(
            self.email_service.send_email, reporter.email, content.subject, content.html, content.text
        )
