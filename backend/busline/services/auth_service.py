"""
Authentication service handling user registration, login and profile edits.
"""

from busline.core.errors import AuthenticationError, ConflictError
from busline.core.logging import get_logger
from busline.core.security import create_access_token, decode_access_token, hash_password, verify_password
from busline.schemas.user import Identity, ProfileUpdate, User, UserCreate, UserLogin
from busline.store.base import EntityStore

logger = get_logger(__name__)


async def register_user(store: EntityStore, user_data: UserCreate, is_admin: bool = False) -> User:
    """
    Register a new user with hashed password.
    Raises ConflictError if email or username already exists.
    """
    try:
        user = await store.create_user(user_data, hash_password(user_data.password), is_admin=is_admin)
    except ConflictError as e:
        logger.warning("registration_failed", email=user_data.email, reason=e.message)
        raise

    logger.info("user_registered", user_id=user.id, email=user.email, is_admin=is_admin)
    return user


async def authenticate_user(store: EntityStore, login_data: UserLogin) -> str:
    """
    Authenticate user and return JWT access token.
    Raises AuthenticationError if credentials are invalid.
    """
    user = await store.get_user_by_email(login_data.email)

    if not user or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_failed", email=login_data.email)
        raise AuthenticationError("Invalid email or password")

    token = create_access_token(data={"sub": user.id})
    logger.info("user_logged_in", user_id=user.id)
    return token


async def resolve_identity(store: EntityStore, token: str) -> Identity:
    """Turn a bearer token into the caller's identity, re-reading the admin flag."""
    user_id = decode_access_token(token)
    user = await store.get_user(user_id)
    if user is None:
        raise AuthenticationError("User no longer exists")
    return Identity(id=user.id, is_admin=user.is_admin)


async def update_profile(store: EntityStore, user_id: str, updates: ProfileUpdate) -> User:
    """Profile fields and the credential are the only mutable parts of a user."""
    user = await store.update_user(
        user_id,
        first_name=updates.first_name,
        last_name=updates.last_name,
        phone=updates.phone,
        hashed_password=hash_password(updates.password) if updates.password else None,
    )
    logger.info(
        "profile_updated",
        user_id=user_id,
        fields=sorted(updates.model_dump(exclude_none=True, exclude={"password"})),
        password_changed=updates.password is not None,
    )
    return user
