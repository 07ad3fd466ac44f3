from fastapi import APIRouter, Body, Depends, HTTPException

from modules.auth.models import Identity
from modules.auth.store import UserDirectory
from modules.shared.deps import get_user_directory
from modules.shared.response import success_response
from .manager import get_current_user, login_user, register_user

router = APIRouter()


@router.post("/register")
async def register(payload: dict = Body(...), users: UserDirectory = Depends(get_user_directory)):
    """Register new user"""
    user = await register_user(users, payload)
    return success_response(user.public(), "User registered successfully", 201)


@router.post("/login")
async def login(payload: dict = Body(...), users: UserDirectory = Depends(get_user_directory)):
    """Authenticate user"""
    return success_response(await login_user(users, payload), "Login successful")


@router.get("/me")
async def get_me(
    identity: Identity = Depends(get_current_user),
    users: UserDirectory = Depends(get_user_directory),
):
    """Get current user details"""
    user = await users.get_by_id(identity.user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return success_response(user.public(), "User details retrieved")
