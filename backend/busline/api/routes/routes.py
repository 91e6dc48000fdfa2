"""
Route catalog endpoints. Listings and searches are served through the cache.
"""

from fastapi import APIRouter, Depends, Query, status

from busline.api.deps import get_identity, get_services
from busline.schemas.fleet import Route, RouteCreate
from busline.schemas.user import Identity
from busline.services.bootstrap import Services

router = APIRouter(prefix="/routes", tags=["Routes"])


@router.get("", response_model=list[Route])
async def list_routes(
    active_only: bool = Query(False, alias="activeOnly"),
    services: Services = Depends(get_services),
):
    return await services.catalog.list_routes(active_only=active_only)


@router.get("/search", response_model=list[Route])
async def search_routes(
    from_location: str = Query(..., alias="from", min_length=1),
    to_location: str = Query(..., alias="to", min_length=1),
    services: Services = Depends(get_services),
):
    """Active routes whose endpoints match exactly."""
    return await services.catalog.search_routes(from_location, to_location)


@router.post("", response_model=Route, status_code=status.HTTP_201_CREATED)
async def create_route(
    data: RouteCreate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.catalog.create_route(identity, data)


@router.post("/{route_id}/deactivate", response_model=Route)
async def deactivate_route(
    route_id: str,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.catalog.deactivate_route(identity, route_id)
