"""
Request dependencies: the application's services and the caller's identity.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from busline.core.errors import AuthenticationError
from busline.schemas.user import Identity
from busline.services.auth_service import resolve_identity
from busline.services.bootstrap import Services

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    services: Services = Depends(get_services),
) -> Identity:
    """Resolve the bearer token; the admin flag always comes from the store."""
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    return await resolve_identity(services.store, credentials.credentials)
