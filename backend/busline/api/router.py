"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter

from busline.api.routes import admin, auth, bookings, buses, payments, routes, schedules

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth.router)
api_router.include_router(routes.router)
api_router.include_router(buses.router)
api_router.include_router(schedules.router)
api_router.include_router(bookings.router)
api_router.include_router(payments.router)
api_router.include_router(admin.router)
