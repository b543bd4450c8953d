from bike_rentals.models.customer import Customer
from bike_rentals.models.bike import Bike
from bike_rentals.models.reservation import Reservation, ReservationItem, Note
from bike_rentals.models.waiver import Waiver

__all__ = ["Customer", "Bike", "Reservation", "ReservationItem", "Note", "Waiver"]
