"""
Authentication endpoints: register, login and the caller's own profile.
"""

from fastapi import APIRouter, Depends, status

from busline.api.deps import get_identity, get_services
from busline.core.errors import NotFoundError
from busline.schemas.user import Identity, ProfileUpdate, Token, UserCreate, UserLogin, UserResponse
from busline.services.auth_service import authenticate_user, register_user, update_profile
from busline.services.bootstrap import Services

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, services: Services = Depends(get_services)):
    """Register a new user account."""
    return await register_user(services.store, user_data)


@router.post("/login", response_model=Token)
async def login(login_data: UserLogin, services: Services = Depends(get_services)):
    """Authenticate and receive a JWT access token."""
    token = await authenticate_user(services.store, login_data)
    return Token(access_token=token)


@router.get("/me", response_model=UserResponse)
async def me(
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    user = await services.store.get_user(identity.id)
    if user is None:
        raise NotFoundError(f"User {identity.id} not found")
    return user


@router.patch("/me", response_model=UserResponse)
async def update_me(
    updates: ProfileUpdate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    """Update profile fields or the password. E-mail and username are fixed."""
    return await update_profile(services.store, identity.id, updates)
