import math
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

MAX_DESCRIPTION_LENGTH = 1000
DEFAULT_REJECTION_REASON = "No reason provided"


class IncidentType(str, Enum):
    ROAD_HAZARD = "road_hazard"
    THEFT = "theft"
    FLOODING = "flooding"
    POWER_OUTAGE = "power_outage"
    FIRE = "fire"
    MEDICAL_EMERGENCY = "medical_emergency"
    OTHER = "other"


class IncidentStatus(str, Enum):
    REPORTED = "reported"
    VERIFIED = "verified"
    REJECTED = "rejected"
    RESOLVED = "resolved"


def check_coordinates(value) -> List[float]:
    """Return a [longitude, latitude] pair or raise ValueError."""
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError("location must be an array with [longitude, latitude]")
    coords = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            raise ValueError("coordinates must be numbers")
        if not math.isfinite(item):
            raise ValueError("coordinates must be finite numbers")
        coords.append(float(item))
    lon, lat = coords
    if not -180 <= lon <= 180:
        raise ValueError("longitude must be between -180 and 180")
    if not -90 <= lat <= 90:
        raise ValueError("latitude must be between -90 and 90")
    return coords


class Location(BaseModel):
    """GeoJSON-style point as persisted: {type: "Point", coordinates: [lon, lat], address}."""
    type: Literal["Point"] = "Point"
    coordinates: List[float]
    address: str = ""

    @field_validator("coordinates", mode="before")
    @classmethod
    def validate_coordinates(cls, v):
        return check_coordinates(v)

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]


def _split_location(data):
    # Accept both `location: [lon, lat]` with a sibling `address`, and a location object.
    if isinstance(data, dict) and isinstance(data.get("location"), dict):
        data = dict(data)
        loc = data.pop("location")
        data["location"] = loc.get("coordinates")
        if loc.get("address") is not None and data.get("address") is None:
            data["address"] = loc.get("address")
    return data


class IncidentSubmit(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    type: IncidentType
    description: str = Field(..., min_length=1, max_length=MAX_DESCRIPTION_LENGTH)
    location: List[float]
    address: Optional[str] = None
    images: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def unpack_location(cls, data):
        return _split_location(data)

    @field_validator("location", mode="before")
    @classmethod
    def validate_location(cls, v):
        return check_coordinates(v)

    def to_location(self) -> Location:
        return Location(coordinates=self.location, address=self.address or "")


class IncidentUpdate(BaseModel):
    """Partial update a reporter may apply while the incident is still `reported`."""
    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[IncidentType] = None
    description: Optional[str] = Field(None, min_length=1, max_length=MAX_DESCRIPTION_LENGTH)
    location: Optional[List[float]] = None
    address: Optional[str] = None
    images: Optional[List[str]] = None

    @model_validator(mode="before")
    @classmethod
    def unpack_location(cls, data):
        return _split_location(data)

    @field_validator("location", mode="before")
    @classmethod
    def validate_location(cls, v):
        if v is None:
            return v
        return check_coordinates(v)

    @field_validator("type", "description", "images")
    @classmethod
    def not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class IncidentReject(BaseModel):
    rejection_reason: Optional[str] = Field(None, alias="rejectionReason")

    model_config = ConfigDict(populate_by_name=True)


class Incident(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    type: IncidentType
    description: str
    location: Location
    images: List[str] = Field(default_factory=list)
    status: IncidentStatus = IncidentStatus.REPORTED
    reported_by: str
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_document(self) -> dict:
        """Serialize to the persisted/wire layout (camelCase keys, ISO timestamps)."""
        return self.model_dump(by_alias=True, mode="json")
