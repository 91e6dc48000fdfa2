"""
Credential hashing and access tokens.

Passwords are hashed with passlib (pbkdf2_sha256, no native backend needed).
Tokens are HS256 JWTs carrying the user id in `sub`; the admin flag is never
trusted from the token and is re-read from the store on every request.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from passlib.context import CryptContext

from busline.core.config import get_settings
from busline.core.errors import AuthenticationError, PermissionDeniedError

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed_password: str) -> bool:
    return pwd_context.verify(password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = dict(data)
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> str:
    """Return the user id carried by a valid token."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.PyJWTError:
        raise AuthenticationError("Could not validate credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Could not validate credentials")
    return user_id


def require_admin(identity, action: str = "") -> None:
    """Admin-only operations call this with the caller's resolved identity."""
    if identity is None or not identity.is_admin:
        raise PermissionDeniedError("Admin access required", action=action)
