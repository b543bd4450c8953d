from datetime import date as date_type
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from bike_rentals.config import settings
from bike_rentals.database import get_db
from bike_rentals.errors import HTTP_STATUS
from bike_rentals.services import availability, bookings_query, cms, fulfillment, payments, reservations
from bike_rentals.services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter()


def respond(result: dict, success_status: int = 200) -> JSONResponse:
    """Map an engine envelope onto an HTTP response"""
    if result.get("status") == "error":
        return JSONResponse(status_code=HTTP_STATUS.get(result.get("kind"), 500), content=result)
    return JSONResponse(status_code=success_status, content=result)


class CustomerDraft(BaseModel):
    full_name: str
    email: Optional[str] = None
    phone: str = ""
    date_of_birth: Optional[date_type] = None


class BikeRef(BaseModel):
    bike_id: int


class HoldRequest(BaseModel):
    """Request model for /bookings/hold"""

    customer: Optional[CustomerDraft] = None
    bikes: List[BikeRef]
    date: date_type
    duration: str
    start_time: Optional[str] = None
    end_date: Optional[date_type] = None


class WalkInRequest(BaseModel):
    """Request model for /admin/walk-in"""

    customer: CustomerDraft
    bikes: List[BikeRef]
    duration: str
    end_date: Optional[date_type] = None


class PayRequest(BaseModel):
    payment_token: str


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class ItemsRequest(BaseModel):
    item_ids: Optional[List[str]] = None


class CheckInRequest(ItemsRequest):
    notes: Optional[str] = None


class ExtendRequest(BaseModel):
    new_return_time: str


class NoteRequest(BaseModel):
    text: str


def _customer(draft: Optional[CustomerDraft]) -> Optional[dict]:
    return draft.model_dump(mode="json") if draft else None


# ── Public ──────────────────────────────────────────────────────────────


@router.get("/availability")
def get_availability(
    date: date_type,
    duration: str,
    start_time: Optional[str] = None,
    end_date: Optional[date_type] = None,
    db: Session = Depends(get_db),
):
    """Free bikes per type for the requested window"""
    return respond(availability.check_availability(db, date, duration, start_time, end_date))


@router.post("/bookings/hold")
def create_hold(request: HoldRequest, db: Session = Depends(get_db)):
    result = reservations.create_hold(
        db,
        _customer(request.customer),
        [bike.model_dump() for bike in request.bikes],
        request.date,
        request.duration,
        request.start_time,
        request.end_date,
    )
    return respond(result, success_status=201)


@router.post("/bookings/{reservation_id}/pay")
def mark_paid(reservation_id: str, request: PayRequest, db: Session = Depends(get_db)):
    return respond(reservations.mark_paid(db, reservation_id, request.payment_token))


@router.get("/bookings/ref/{booking_ref}")
def get_public_booking(booking_ref: str, token: str = Query(...), db: Session = Depends(get_db)):
    """Customer booking page lookup; requires the booking token"""
    return respond(bookings_query.get_public_booking(db, booking_ref, token))


@router.get("/waiver-text")
def get_waiver_text():
    return {"status": "success", "text": cms.get_waiver_text()}


# ── Admin ───────────────────────────────────────────────────────────────


@router.get("/admin/dashboard")
def get_dashboard(db: Session = Depends(get_db)):
    return respond(bookings_query.get_dashboard(db))


@router.get("/admin/fleet")
def get_fleet_status(db: Session = Depends(get_db)):
    """Per-type counts: total, available, rented out, reserved, in maintenance"""
    return respond(bookings_query.get_fleet_status(db))


@router.get("/admin/bookings")
def list_bookings(
    status: str = "all",
    date: str = "all",
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=bookings_query.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    return respond(bookings_query.list_reservations(db, status, date, search, page, limit))


@router.get("/admin/bookings/{reservation_id}")
def get_booking(reservation_id: str, db: Session = Depends(get_db)):
    return respond(bookings_query.get_reservation_detail(db, reservation_id))


@router.post("/admin/walk-in")
def create_walk_in(request: WalkInRequest, db: Session = Depends(get_db)):
    result = reservations.create_walk_in(
        db,
        _customer(request.customer),
        [bike.model_dump() for bike in request.bikes],
        request.duration,
        request.end_date,
    )
    return respond(result, success_status=201)


@router.post("/admin/bookings/{reservation_id}/cancel")
def cancel_booking(
    reservation_id: str,
    request: CancelRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return respond(reservations.cancel(db, reservation_id, request.reason, gateway))


@router.post("/admin/bookings/{reservation_id}/complete")
def complete_booking(reservation_id: str, db: Session = Depends(get_db)):
    return respond(reservations.complete(db, reservation_id))


@router.post("/admin/bookings/{reservation_id}/checkout")
def check_out(reservation_id: str, request: ItemsRequest, db: Session = Depends(get_db)):
    return respond(fulfillment.check_out(db, reservation_id, request.item_ids))


@router.post("/admin/bookings/{reservation_id}/checkin")
def check_in(reservation_id: str, request: CheckInRequest, db: Session = Depends(get_db)):
    return respond(fulfillment.check_in(db, reservation_id, request.item_ids, request.notes))


@router.post("/admin/bookings/{reservation_id}/extend")
def extend_booking(reservation_id: str, request: ExtendRequest, db: Session = Depends(get_db)):
    return respond(fulfillment.extend(db, reservation_id, request.new_return_time))


@router.post("/admin/bookings/{reservation_id}/notes")
def add_note(reservation_id: str, request: NoteRequest, db: Session = Depends(get_db)):
    return respond(reservations.add_note(db, reservation_id, request.text), success_status=201)


@router.post("/admin/bookings/{reservation_id}/capture")
def capture_payment(
    reservation_id: str,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return respond(payments.capture_payment(db, reservation_id, gateway))


@router.post("/admin/bookings/{reservation_id}/void")
def void_payment(
    reservation_id: str,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return respond(payments.void_payment(db, reservation_id, gateway))


@router.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "ok", "app": settings.app_name}
