"""
Tests for per-item checkout, check-in and extension
"""
from datetime import datetime, timedelta

import pytest

from bike_rentals.models import Note, Reservation
from bike_rentals.services.fulfillment import check_in, check_out, extend


def items_of(db, reservation_id):
    reservation = db.get(Reservation, reservation_id)
    db.refresh(reservation)
    return sorted(reservation.items, key=lambda item: item.bike_id)


@pytest.mark.integration
class TestCheckOut:
    """Test handing bikes over"""

    def test_partial_checkout_then_full_checkin(self, make_paid, test_db_session, t0):
        """Three bikes; check out one, then check all three in"""
        reservation_id = make_paid([101, 102, 201])
        first = items_of(test_db_session, reservation_id)[0]

        result = check_out(test_db_session, reservation_id, [first.id], now=t0)

        assert result["status"] == "success"
        assert result["booking_status"] == "active"
        assert result["checked_out"] == 1
        items = items_of(test_db_session, reservation_id)
        assert items[0].checked_out_at == t0
        assert items[1].checked_out_at is None
        assert items[2].checked_out_at is None

        later = t0 + timedelta(hours=3)
        result = check_in(test_db_session, reservation_id, [item.id for item in items], now=later)

        assert result["booking_status"] == "completed"
        assert result["checked_in"] == 3
        assert result["all_returned"] is True
        assert test_db_session.get(Reservation, reservation_id).status == "completed"

    def test_checkout_is_idempotent(self, make_paid, test_db_session, t0):
        reservation_id = make_paid([101, 102])
        check_out(test_db_session, reservation_id, now=t0)
        once = [(item.id, item.checked_out_at) for item in items_of(test_db_session, reservation_id)]

        result = check_out(test_db_session, reservation_id, now=t0 + timedelta(minutes=30))

        assert result["status"] == "success"
        assert result["checked_out"] == 0
        twice = [(item.id, item.checked_out_at) for item in items_of(test_db_session, reservation_id)]
        assert once == twice
        assert test_db_session.get(Reservation, reservation_id).status == "active"

    def test_checkout_requires_payment(self, make_hold, test_db_session, t0):
        hold = make_hold([101])
        result = check_out(test_db_session, hold["reservation_id"], now=t0)
        assert result["kind"] == "conflict"

    def test_unknown_item(self, make_paid, test_db_session, t0):
        reservation_id = make_paid([101])
        result = check_out(test_db_session, reservation_id, ["not-an-item"], now=t0)
        assert result["kind"] == "not_found"
        assert test_db_session.get(Reservation, reservation_id).status == "paid"


@pytest.mark.integration
class TestCheckIn:
    """Test returns"""

    def test_partial_checkin_stays_active(self, make_paid, test_db_session, t0):
        reservation_id = make_paid([101, 102])
        check_out(test_db_session, reservation_id, now=t0)
        first = items_of(test_db_session, reservation_id)[0]

        result = check_in(test_db_session, reservation_id, [first.id], notes="Scratched frame", now=t0)

        assert result["booking_status"] == "active"
        assert result["all_returned"] is False
        assert test_db_session.query(Note).one().text == "Scratched frame"

    def test_checkin_requires_active(self, make_paid, test_db_session, t0):
        reservation_id = make_paid([101])
        result = check_in(test_db_session, reservation_id, now=t0)
        assert result["kind"] == "conflict"

    def test_unused_item_recorded_as_returned(self, make_paid, test_db_session, t0):
        """Checking in everything completes even if one bike never left"""
        reservation_id = make_paid([101, 102])
        first = items_of(test_db_session, reservation_id)[0]
        check_out(test_db_session, reservation_id, [first.id], now=t0)

        result = check_in(test_db_session, reservation_id, now=t0 + timedelta(hours=1))

        assert result["booking_status"] == "completed"
        unused = items_of(test_db_session, reservation_id)[1]
        assert unused.checked_out_at is None
        assert unused.checked_in_at is not None


@pytest.mark.integration
class TestExtend:
    """Test pushing out the return time"""

    def test_extend(self, make_paid, test_db_session, t0):
        reservation_id = make_paid([101])
        new_end = datetime(2026, 2, 27, 16, 30)  # local, naive

        result = extend(test_db_session, reservation_id, new_end.isoformat(), now=t0)

        assert result["status"] == "success"
        assert result["new_return_time"] == "2026-02-27T23:30:00+00:00"
        reservation = test_db_session.get(Reservation, reservation_id)
        assert reservation.ends_at == datetime(2026, 2, 27, 23, 30)
        assert all(item.ends_at == reservation.ends_at for item in reservation.items)
        assert reservation.notes[0].text == "Rental extended to 2026-02-27T23:30:00+00:00"

    def test_extend_into_other_booking_conflicts(self, make_paid, make_hold, test_db_session, t0):
        reservation_id = make_paid([101])
        make_hold([101], duration="2h", start_time="15:00")

        result = extend(test_db_session, reservation_id, "2026-02-27T16:30:00-07:00", now=t0)

        assert result["kind"] == "conflict"
        assert test_db_session.get(Reservation, reservation_id).ends_at == datetime(2026, 2, 27, 21, 30)

    def test_extend_must_move_later(self, make_paid, test_db_session, t0):
        reservation_id = make_paid([101])
        result = extend(test_db_session, reservation_id, "2026-02-27T12:00:00-07:00", now=t0)
        assert result["kind"] == "validation"

    def test_extend_malformed_time(self, make_paid, test_db_session, t0):
        reservation_id = make_paid([101])
        assert extend(test_db_session, reservation_id, "tomorrow", now=t0)["kind"] == "validation"

    def test_extend_hold_rejected(self, make_hold, test_db_session, t0):
        hold = make_hold([101])
        result = extend(test_db_session, hold["reservation_id"], "2026-02-27T16:30:00-07:00", now=t0)
        assert result["kind"] == "conflict"
