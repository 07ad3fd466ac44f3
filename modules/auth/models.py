from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


PRIVILEGED_ROLES = (Role.MODERATOR, Role.ADMIN)


class Identity(BaseModel):
    """Authenticated caller as seen by the incident core."""
    user_id: str
    role: Role = Role.USER

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


class User(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    email: str
    role: Role = Role.USER
    is_active: bool = True
    created_at: Optional[datetime] = None
    password_hash: str = Field("", exclude=True)

    def summary(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}

    def public(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class UserRegister(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=6, max_length=72)


class UserLogin(BaseModel):
    email: str
    password: str
