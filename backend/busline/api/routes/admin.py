"""
Admin dashboard endpoints. The service layer enforces the admin flag.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from busline.api.deps import get_identity, get_services
from busline.schemas.analytics import Alert, Analytics
from busline.schemas.prediction import ActualDemandUpdate, DemandPrediction, DemandPredictionCreate
from busline.schemas.user import Identity
from busline.services.bootstrap import Services

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/analytics", response_model=Analytics)
async def get_analytics(
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.analytics.analytics(identity)


@router.get("/alerts", response_model=list[Alert])
async def get_alerts(
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.analytics.alerts(identity)


@router.get("/predictions", response_model=list[DemandPrediction])
async def list_predictions(
    on_date: date = Query(..., alias="date"),
    route_id: Optional[str] = Query(None, alias="routeId"),
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.analytics.list_predictions(identity, route_id, on_date)


@router.post("/predictions", response_model=DemandPrediction, status_code=status.HTTP_201_CREATED)
async def create_prediction(
    data: DemandPredictionCreate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return await services.analytics.create_prediction(identity, data)


@router.patch("/predictions/{prediction_id}", response_model=DemandPrediction)
async def record_actual_demand(
    prediction_id: str,
    update: ActualDemandUpdate,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    """Record observed demand; accuracy is derived from it."""
    return await services.analytics.record_actual(identity, prediction_id, update.actual_demand)
