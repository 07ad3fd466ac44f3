from typing import List, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from modules.shared.errors import ValidationError
from .models import Incident, IncidentUpdate, Location


def format_validation_error(exc: PydanticValidationError) -> str:
    """Flatten pydantic errors into one readable line."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "Invalid input"


def parse_model(model: type, payload) -> BaseModel:
    """Validate a raw payload into `model`, raising the service ValidationError."""
    if isinstance(payload, model):
        return payload
    if payload is None:
        raise ValidationError("Request body is required")
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be an object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(format_validation_error(e)) from e


def build_update_patch(current: Incident, update: IncidentUpdate) -> dict:
    """Turn a reporter's partial update into a store patch (no status fields)."""
    provided = update.model_fields_set
    patch = {}
    for field in ("type", "description", "images"):
        if field in provided:
            patch[field] = getattr(update, field)
    new_location: Optional[Location] = None
    if "location" in provided and update.location is not None:
        address = update.address if "address" in provided and update.address is not None else current.location.address
        new_location = Location(coordinates=update.location, address=address)
    elif "address" in provided:
        new_location = Location(coordinates=current.location.coordinates, address=update.address or "")
    if new_location is not None:
        patch["location"] = new_location
    return patch


def _person(user_id: Optional[str], people: dict) -> Optional[dict]:
    if not user_id:
        return None
    user = people.get(user_id)
    if user is None:
        return {"id": user_id, "name": None, "email": None}
    return user.summary()


async def with_people(incidents: List[Incident], users) -> List[dict]:
    """Serialize incidents with reporter/verifier ids expanded to {id, name, email}."""
    ids = {i.reported_by for i in incidents} | {i.verified_by for i in incidents if i.verified_by}
    people = await users.get_many(ids) if ids else {}
    documents = []
    for incident in incidents:
        doc = incident.to_document()
        doc["reportedBy"] = _person(incident.reported_by, people)
        doc["verifiedBy"] = _person(incident.verified_by, people)
        documents.append(doc)
    return documents
