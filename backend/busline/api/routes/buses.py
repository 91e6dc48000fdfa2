"""
Fleet endpoints: buses, live locations and location reports.
"""

from fastapi import APIRouter, Depends, status

from busline.api.deps import get_identity, get_services
from busline.schemas.fleet import Bus, BusCreate, BusLocation, BusLocationReport, BusWithLocation
from busline.schemas.user import Identity
from busline.services.bootstrap import Services

router = APIRouter(prefix="/buses", tags=["Buses"])


@router.get("", response_model=list[Bus])
async def list_buses(services: Services = Depends(get_services)):
    return await services.catalog.list_buses()


@router.get("/locations", response_model=list[BusWithLocation])
async def list_bus_locations(services: Services = Depends(get_services)):
    """Every bus with its current location (null before its first report)."""
    return await services.catalog.list_buses_with_locations()


@router.get("/{bus_id}/location", response_model=BusLocation)
async def get_bus_location(bus_id: str, services: Services = Depends(get_services)):
    return await services.catalog.get_bus_location(bus_id)


@router.put("/{bus_id}/location", response_model=BusLocation)
async def report_bus_location(
    bus_id: str,
    report: BusLocationReport,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    """Telemetry or manual position report. Creates the row on first report."""
    return await services.catalog.report_location(identity, bus_id, report)


@router.post("", response_model=Bus, status_code=status.HTTP_201_CREATED)
async def create_bus(
    data: BusCreate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.catalog.create_bus(identity, data)


@router.post("/{bus_id}/deactivate", response_model=Bus)
async def deactivate_bus(
    bus_id: str,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.catalog.deactivate_bus(identity, bus_id)
