import logging
from uuid import uuid4

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer

from modules.auth.models import Identity, Role, User, UserLogin, UserRegister
from modules.auth.store import UserDirectory
from modules.auth.utils import create_access_token, decode_token, hash_password, verify_password
from modules.incidents.utils import parse_model
from modules.shared.deps import get_user_directory

# Configure logger
logger = logging.getLogger("auth.manager")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def issue_token(user: User) -> str:
    return create_access_token({"sub": user.id, "role": user.role.value})


async def register_user(users: UserDirectory, payload) -> User:
    """Register a new user. Self-registration always yields the `user` role."""
    data: UserRegister = parse_model(UserRegister, payload)
    logger.info(f"Attempting to register user: {data.email}")
    user = User(
        id=str(uuid4()),
        name=data.name,
        email=data.email.lower(),
        role=Role.USER,
        password_hash=hash_password(data.password),
    )
    created = await users.create(user)
    logger.info(f"User registered successfully: {created.email} (id: {created.id})")
    return created


async def login_user(users: UserDirectory, payload) -> dict:
    """Authenticate user and return JWT and user data"""
    data: UserLogin = parse_model(UserLogin, payload)
    logger.info(f"Attempting login for user: {data.email}")
    user = await users.get_by_email(data.email)
    if user is None or not verify_password(data.password, user.password_hash):
        logger.warning(f"Login failed: Invalid credentials for user '{data.email}'.")
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        logger.warning(f"Login refused for inactive user {user.id}")
        raise HTTPException(status_code=403, detail="Account is disabled")
    token = issue_token(user)
    logger.info(f"User '{data.email}' authenticated successfully. Token generated.")
    return {"token": token, "user": user.public()}


async def identity_from_token(token: str, users: UserDirectory) -> Identity:
    payload = decode_token(token)
    if not payload or not payload.get("sub"):
        logger.warning("Invalid token provided.")
        raise HTTPException(status_code=401, detail="Invalid token")
    user = await users.get_by_id(payload["sub"])
    if user is None or not user.is_active:
        logger.warning(f"User not found or inactive for id: {payload['sub']}")
        raise HTTPException(status_code=401, detail="User not found")
    return Identity(user_id=user.id, role=user.role)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    users: UserDirectory = Depends(get_user_directory),
) -> Identity:
    """Get current caller identity from JWT"""
    return await identity_from_token(token, users)


async def get_optional_user(
    token: str = Depends(optional_oauth2_scheme),
    users: UserDirectory = Depends(get_user_directory),
):
    if not token:
        return None
    return await identity_from_token(token, users)


async def require_moderator(identity: Identity = Depends(get_current_user)) -> Identity:
    if not identity.is_privileged:
        logger.warning(f"User {identity.user_id} with role {identity.role.value} denied moderator access")
        raise HTTPException(status_code=403, detail="Moderator or admin role required")
    return identity
