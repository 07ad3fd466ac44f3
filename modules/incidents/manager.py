import logging
from typing import List, Optional

from fastapi import UploadFile

from modules.auth.models import Identity
from modules.auth.store import UserDirectory
from modules.shared.errors import ForbiddenError, NotFoundError, ValidationError
from modules.shared.uploads import CloudinaryUploader
from .lifecycle import LifecycleManager
from .models import IncidentReject, IncidentStatus, IncidentSubmit
from .query import QueryEngine, QueryResult, Visibility
from .store import IncidentStore
from .utils import parse_model, with_people

logger = logging.getLogger("incidents.manager")


def _require_privileged(identity: Identity) -> None:
    if not identity.is_privileged:
        raise ForbiddenError("Moderator or admin role required")


class IncidentService:
    """
    Entry point used by the HTTP layer.

    Combines the lifecycle manager, the query engine and the user directory,
    applies role checks and shapes results for the response envelope.
    """

    def __init__(
        self,
        store: IncidentStore,
        users: UserDirectory,
        lifecycle: LifecycleManager,
        queries: QueryEngine,
        uploader: Optional[CloudinaryUploader] = None,
    ):
        self.store = store
        self.users = users
        self.lifecycle = lifecycle
        self.queries = queries
        self.uploader = uploader

    async def _listing(self, result: QueryResult) -> dict:
        return {
            "incidents": await with_people(result.items, self.users),
            "pagination": result.pagination(),
            "filters": result.filters,
        }

    async def _single(self, incident) -> dict:
        return (await with_people([incident], self.users))[0]

    async def create(self, identity: Identity, payload) -> dict:
        incident = await self.lifecycle.submit(payload, identity.user_id)
        return await self._single(incident)

    async def create_with_uploads(self, identity: Identity, fields: dict, files: List[UploadFile]) -> dict:
        """Multipart creation: fields are validated before any upload, nothing is stored if an upload fails."""
        if self.uploader is None:
            raise ValidationError("Image uploads are not available")
        payload = dict(fields)
        lat, lon = payload.pop("latitude", None), payload.pop("longitude", None)
        if lat is None or lon is None:
            raise ValidationError("latitude and longitude are required")
        try:
            payload["location"] = [float(lon), float(lat)]
        except (TypeError, ValueError) as e:
            raise ValidationError("latitude and longitude must be numbers") from e
        parse_model(IncidentSubmit, {**payload, "images": []})
        payload["images"] = await self.uploader.upload_images(files or [])
        logger.info(f"Uploaded {len(payload['images'])} image(s) for new incident by {identity.user_id}")
        return await self.create(identity, payload)

    async def list_public(self, params) -> dict:
        return await self._listing(await self.queries.search(params, Visibility.PUBLIC))

    async def list_mine(self, identity: Identity, params) -> dict:
        return await self._listing(await self.queries.search(params, Visibility.OWNER, identity.user_id))

    async def list_all(self, identity: Identity, params) -> dict:
        _require_privileged(identity)
        return await self._listing(await self.queries.search(params, Visibility.PRIVILEGED, identity.user_id))

    async def get(self, identity: Optional[Identity], incident_id: str) -> dict:
        incident = await self.store.get_by_id(incident_id)
        if incident is None:
            raise NotFoundError("Incident not found")
        visible = (
            incident.status == IncidentStatus.VERIFIED
            or (identity is not None and (identity.is_privileged or incident.reported_by == identity.user_id))
        )
        if not visible:
            raise ForbiddenError("You do not have access to this incident")
        return await self._single(incident)

    async def update(self, identity: Identity, incident_id: str, changes) -> dict:
        incident = await self.lifecycle.update_owned(incident_id, identity.user_id, changes)
        return await self._single(incident)

    async def delete(self, identity: Identity, incident_id: str) -> None:
        await self.lifecycle.delete_owned(incident_id, identity.user_id)

    async def verify(self, identity: Identity, incident_id: str) -> dict:
        _require_privileged(identity)
        return await self._single(await self.lifecycle.verify(incident_id, identity.user_id))

    async def reject(self, identity: Identity, incident_id: str, body=None) -> dict:
        _require_privileged(identity)
        reason = parse_model(IncidentReject, body).rejection_reason if body else None
        return await self._single(await self.lifecycle.reject(incident_id, identity.user_id, reason))

    async def resolve(self, identity: Identity, incident_id: str) -> dict:
        _require_privileged(identity)
        return await self._single(await self.lifecycle.resolve(incident_id, identity.user_id))
