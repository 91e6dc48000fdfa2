from busline.schemas.user import UserCreate, UserResponse, UserLogin, ProfileUpdate, Identity, Token
from busline.schemas.fleet import (
    RouteCreate, Route, BusCreate, Bus, BusLocationUpdate, BusLocationReport,
    BusLocation, BusWithLocation,
)
from busline.schemas.schedule import (
    ScheduleStatus, ScheduleCreate, ScheduleUpdate, Schedule, ScheduleWithDetails,
)
from busline.schemas.booking import (
    BookingStatus, PaymentStatus, PassengerDetails, BookingCreate, NewBooking,
    Booking, BookingWithDetails, BookingStatusUpdate, PaymentRequest, PaymentResult,
)
from busline.schemas.prediction import DemandPredictionCreate, DemandPrediction, ActualDemandUpdate
from busline.schemas.realtime import RealtimeEvent

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "ProfileUpdate", "Identity", "Token",
    "RouteCreate", "Route", "BusCreate", "Bus", "BusLocationUpdate", "BusLocationReport",
    "BusLocation", "BusWithLocation",
    "ScheduleStatus", "ScheduleCreate", "ScheduleUpdate", "Schedule", "ScheduleWithDetails",
    "BookingStatus", "PaymentStatus", "PassengerDetails", "BookingCreate", "NewBooking",
    "Booking", "BookingWithDetails", "BookingStatusUpdate", "PaymentRequest", "PaymentResult",
    "DemandPredictionCreate", "DemandPrediction", "ActualDemandUpdate",
    "RealtimeEvent",
]
