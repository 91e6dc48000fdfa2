from busline.models.user import User
from busline.models.fleet import Route, Bus, BusLocation
from busline.models.schedule import Schedule
from busline.models.booking import Booking, SeatAssignment
from busline.models.prediction import DemandPrediction

__all__ = [
    "User", "Route", "Bus", "BusLocation", "Schedule", "Booking", "SeatAssignment",
    "DemandPrediction",
]
