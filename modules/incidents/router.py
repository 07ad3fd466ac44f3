from typing import List, Optional

from fastapi import APIRouter, Body, Depends, File, Form, Request, UploadFile

from modules.auth.manager import get_current_user, get_optional_user, require_moderator
from modules.auth.models import Identity
from modules.shared.deps import get_incident_service
from modules.shared.response import success_response
from .manager import IncidentService

router = APIRouter()


@router.get("/verified")
async def list_verified(request: Request, service: IncidentService = Depends(get_incident_service)):
    """Public feed of verified incidents, optionally around a point"""
    data = await service.list_public(dict(request.query_params))
    return success_response(data, "Verified incidents retrieved")


@router.post("/")
async def submit(
    payload: dict = Body(...),
    identity: Identity = Depends(get_current_user),
    service: IncidentService = Depends(get_incident_service),
):
    incident = await service.create(identity, payload)
    return success_response(incident, "Incident reported successfully", 201)


@router.post("/upload")
async def submit_with_images(
    type: str = Form(...),
    description: str = Form(...),
    latitude: float = Form(...),
    longitude: float = Form(...),
    address: Optional[str] = Form(None),
    images: List[UploadFile] = File(default=[]),
    identity: Identity = Depends(get_current_user),
    service: IncidentService = Depends(get_incident_service),
):
    fields = {
        "type": type,
        "description": description,
        "latitude": latitude,
        "longitude": longitude,
        "address": address,
    }
    incident = await service.create_with_uploads(identity, fields, images)
    return success_response(incident, "Incident reported successfully", 201)


@router.get("/my-incidents")
async def my_incidents(
    request: Request,
    identity: Identity = Depends(get_current_user),
    service: IncidentService = Depends(get_incident_service),
):
    data = await service.list_mine(identity, dict(request.query_params))
    return success_response(data, "Your incidents retrieved")


@router.get("/")
async def list_all(
    request: Request,
    identity: Identity = Depends(require_moderator),
    service: IncidentService = Depends(get_incident_service),
):
    data = await service.list_all(identity, dict(request.query_params))
    return success_response(data, "Incidents retrieved")


@router.patch("/{incident_id}/verify")
async def verify(
    incident_id: str,
    identity: Identity = Depends(require_moderator),
    service: IncidentService = Depends(get_incident_service),
):
    return success_response(await service.verify(identity, incident_id), "Incident verified")


@router.patch("/{incident_id}/reject")
async def reject(
    incident_id: str,
    payload: Optional[dict] = Body(None),
    identity: Identity = Depends(require_moderator),
    service: IncidentService = Depends(get_incident_service),
):
    """Reject an incident. Body: { "rejectionReason": "..." } (optional)"""
    return success_response(await service.reject(identity, incident_id, payload), "Incident rejected")


@router.patch("/{incident_id}/resolve")
async def resolve(
    incident_id: str,
    identity: Identity = Depends(require_moderator),
    service: IncidentService = Depends(get_incident_service),
):
    return success_response(await service.resolve(identity, incident_id), "Incident marked as resolved")


@router.get("/{incident_id}")
async def get_single_incident(
    incident_id: str,
    identity: Optional[Identity] = Depends(get_optional_user),
    service: IncidentService = Depends(get_incident_service),
):
    return success_response(await service.get(identity, incident_id), "Incident retrieved")


@router.put("/{incident_id}")
async def update(
    incident_id: str,
    payload: dict = Body(...),
    identity: Identity = Depends(get_current_user),
    service: IncidentService = Depends(get_incident_service),
):
    return success_response(await service.update(identity, incident_id, payload), "Incident updated")


@router.delete("/{incident_id}")
async def delete(
    incident_id: str,
    identity: Identity = Depends(get_current_user),
    service: IncidentService = Depends(get_incident_service),
):
    await service.delete(identity, incident_id)
    return success_response(None, "Incident deleted")
