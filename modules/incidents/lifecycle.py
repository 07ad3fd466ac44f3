"""
Incident lifecycle: the only code path allowed to change an incident's status.

    reported -> verified | rejected
    verified -> rejected | resolved
    rejected -> verified           (re-verify clears the rejection reason)
    resolved                       (terminal)

Every status write is a compare-and-swap keyed on the status that was read,
so concurrent transitions on one incident resolve to one winner and the
others get ConflictError. Notifications are handed to the notifier after the
write commits and never influence the result.
"""

import logging
from typing import Callable, Dict, Optional, Set
from uuid import uuid4

from modules.shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from modules.shared.utils import utcnow
from .models import (
    DEFAULT_REJECTION_REASON,
    Incident,
    IncidentStatus,
    IncidentSubmit,
    IncidentUpdate,
)
from .store import IncidentStore, UpdateOutcome
from .utils import build_update_patch, parse_model

logger = logging.getLogger("incidents.lifecycle")

ALLOWED_TRANSITIONS: Dict[IncidentStatus, Set[IncidentStatus]] = {
    IncidentStatus.REPORTED: {IncidentStatus.VERIFIED, IncidentStatus.REJECTED},
    IncidentStatus.VERIFIED: {IncidentStatus.REJECTED, IncidentStatus.RESOLVED},
    IncidentStatus.REJECTED: {IncidentStatus.VERIFIED},
    IncidentStatus.RESOLVED: set(),  # terminal
}


def can_transition(current: IncidentStatus, target: IncidentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _transition_error(current: IncidentStatus, target: IncidentStatus) -> ConflictError:
    if current == target:
        return ConflictError(f"Incident is already {current.value}")
    if target == IncidentStatus.RESOLVED:
        return ConflictError("Only verified incidents can be marked as resolved")
    if current == IncidentStatus.RESOLVED:
        return ConflictError("Resolved incidents cannot change status")
    return ConflictError(f"Cannot move incident from {current.value} to {target.value}")


class LifecycleManager:

    def __init__(self, store: IncidentStore, notifier=None, clock: Callable = utcnow):
        self.store = store
        self.notifier = notifier
        self.clock = clock

    async def submit(self, report, reporter_id: str) -> Incident:
        """Create an incident in `reported` state for `reporter_id`."""
        if not reporter_id:
            raise ValidationError("Reporter identity is required")
        data: IncidentSubmit = parse_model(IncidentSubmit, report)
        incident = Incident(
            id=str(uuid4()),
            type=data.type,
            description=data.description,
            location=data.to_location(),
            images=list(data.images),
            status=IncidentStatus.REPORTED,
            reported_by=reporter_id,
        )
        incident_id = await self.store.insert(incident)
        stored = await self.store.get_by_id(incident_id) or incident
        logger.info(f"Incident {incident_id} reported by user {reporter_id}")
        self._emit("incident.reported", stored)
        return stored

    async def verify(self, incident_id: str, actor_id: str) -> Incident:
        def patch(current: Incident) -> dict:
            return {
                "status": IncidentStatus.VERIFIED,
                "verified_by": actor_id,
                "verified_at": self._verification_time(current),
                "rejection_reason": None,
            }
        return await self._transition(incident_id, IncidentStatus.VERIFIED, patch, actor_id)

    async def reject(self, incident_id: str, actor_id: str, reason: Optional[str] = None) -> Incident:
        reason = reason.strip() if isinstance(reason, str) else None
        reason = reason or DEFAULT_REJECTION_REASON

        def patch(current: Incident) -> dict:
            return {
                "status": IncidentStatus.REJECTED,
                "verified_by": actor_id,
                "verified_at": self._verification_time(current),
                "rejection_reason": reason,
            }
        return await self._transition(incident_id, IncidentStatus.REJECTED, patch, actor_id)

    async def resolve(self, incident_id: str, actor_id: Optional[str] = None) -> Incident:
        def patch(current: Incident) -> dict:
            return {"status": IncidentStatus.RESOLVED, "resolved_at": self.clock()}
        return await self._transition(incident_id, IncidentStatus.RESOLVED, patch, actor_id)

    async def update_owned(self, incident_id: str, actor_id: str, changes) -> Incident:
        """Apply a reporter's partial edit while the incident is still `reported`."""
        update: IncidentUpdate = parse_model(IncidentUpdate, changes)
        current = await self._load(incident_id)
        self._check_owner(current, actor_id, "update")
        patch = build_update_patch(current, update)
        if not patch:
            return current
        result = await self.store.update(incident_id, IncidentStatus.REPORTED, patch)
        if result.outcome == UpdateOutcome.NOT_FOUND:
            raise NotFoundError("Incident not found")
        if result.outcome == UpdateOutcome.CONFLICT:
            raise ConflictError("Cannot update incident that has been verified or rejected")
        logger.info(f"Incident {incident_id} updated by reporter {actor_id}: {sorted(patch)}")
        return result.incident

    async def delete_owned(self, incident_id: str, actor_id: str) -> None:
        current = await self._load(incident_id)
        self._check_owner(current, actor_id, "delete")
        outcome = await self.store.delete(incident_id, IncidentStatus.REPORTED)
        if outcome == UpdateOutcome.NOT_FOUND:
            raise NotFoundError("Incident not found")
        if outcome == UpdateOutcome.CONFLICT:
            raise ConflictError("Cannot delete incident that has been verified or rejected")
        logger.info(f"Incident {incident_id} deleted by reporter {actor_id}")

    async def _transition(self, incident_id, target, build_patch, actor_id) -> Incident:
        current = await self._load(incident_id)
        if not can_transition(current.status, target):
            logger.warning(
                f"Rejected transition {current.status.value} -> {target.value} on incident {incident_id} by {actor_id}"
            )
            raise _transition_error(current.status, target)

        result = await self.store.update(incident_id, current.status, build_patch(current))
        if result.outcome == UpdateOutcome.NOT_FOUND:
            raise NotFoundError("Incident not found")
        if result.outcome == UpdateOutcome.CONFLICT:
            logger.warning(f"Lost status race on incident {incident_id} ({current.status.value} -> {target.value})")
            raise ConflictError("Incident status changed while processing the request")

        logger.info(f"Incident {incident_id} {current.status.value} -> {target.value} by {actor_id}")
        self._emit(f"incident.{target.value}", result.incident)
        return result.incident

    async def _load(self, incident_id: str) -> Incident:
        incident = await self.store.get_by_id(incident_id)
        if incident is None:
            raise NotFoundError("Incident not found")
        return incident

    @staticmethod
    def _check_owner(current: Incident, actor_id: str, action: str) -> None:
        if current.reported_by != actor_id:
            raise ForbiddenError(f"You can only {action} your own incidents")
        if current.status != IncidentStatus.REPORTED:
            raise ConflictError(f"Cannot {action} incident that has been verified or rejected")

    def _verification_time(self, current: Incident):
        now = self.clock()
        # verifiedAt never moves backwards for an incident
        if current.verified_at is not None and current.verified_at > now:
            return current.verified_at
        return now

    def _emit(self, event: str, incident: Incident) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.emit(event, incident)
        except Exception:
            logger.exception(f"Failed to queue {event} notification for incident {incident.id}")
