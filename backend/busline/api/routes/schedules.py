"""
Schedule endpoints: timetable reads and admin changes.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, status

from busline.api.deps import get_identity, get_services
from busline.schemas.schedule import Schedule, ScheduleCreate, ScheduleUpdate, ScheduleWithDetails
from busline.schemas.user import Identity
from busline.services.bootstrap import Services

router = APIRouter(prefix="/schedules", tags=["Schedules"])


@router.get("", response_model=list[ScheduleWithDetails])
async def list_schedules(services: Services = Depends(get_services)):
    return await services.catalog.list_schedules()


@router.get("/search", response_model=list[ScheduleWithDetails])
async def search_schedules(
    route_id: str = Query(..., alias="routeId"),
    on_date: date = Query(..., alias="date"),
    services: Services = Depends(get_services),
):
    """Schedules of a route departing on the given (UTC) date."""
    return await services.catalog.search_schedules(route_id, on_date)


@router.get("/{schedule_id}", response_model=ScheduleWithDetails)
async def get_schedule(schedule_id: str, services: Services = Depends(get_services)):
    return await services.catalog.get_schedule(schedule_id)


@router.post("", response_model=Schedule, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    data: ScheduleCreate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    """Create a schedule; its inventory starts at the bus capacity."""
    return await services.catalog.create_schedule(identity, data)


@router.patch("/{schedule_id}", response_model=Schedule)
async def update_schedule(
    schedule_id: str,
    updates: ScheduleUpdate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.catalog.update_schedule(identity, schedule_id, updates)
