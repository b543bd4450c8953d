"""
Racing writers against a file-backed SQLite database
"""
import threading
import time

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from bike_rentals.errors import service_operation
from bike_rentals.models import Reservation, ReservationItem
from bike_rentals.services import reservations


def race(session_factory, *calls):
    """Run each call with its own session, released together; returns the envelopes"""
    barrier = threading.Barrier(len(calls))
    results = []

    def run(call):
        with session_factory() as db:
            barrier.wait()
            results.append(call(db))

    threads = [threading.Thread(target=run, args=(call,)) for call in calls]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


@pytest.fixture
def slow_overlap_check(monkeypatch):
    """Hold each request between its overlap check and its insert"""
    check = reservations.conflicting_bike_ids

    def slow(*args, **kwargs):
        taken = check(*args, **kwargs)
        time.sleep(0.3)
        return taken

    monkeypatch.setattr(reservations, "conflicting_bike_ids", slow)


@pytest.mark.integration
@pytest.mark.slow
class TestConcurrentHolds:
    """Two customers racing for the same bike"""

    def test_same_unit_same_window(self, file_fleet, customer, slow_overlap_check, t0):
        Session = sessionmaker(autocommit=False, autoflush=False, bind=file_fleet)

        def hold(db):
            return reservations.create_hold(db, customer, [101], "2026-02-27", "4h", start_time="10:30", now=t0)

        results = race(Session, hold, hold)

        assert sorted(result["status"] for result in results) == ["error", "success"]
        assert [result["kind"] for result in results if result["status"] == "error"] == ["conflict"]
        with Session() as db:
            assert db.query(Reservation).count() == 1
            assert db.query(ReservationItem).filter(ReservationItem.bike_id == 101).count() == 1

    def test_different_units_both_succeed(self, file_fleet, customer, slow_overlap_check, t0):
        Session = sessionmaker(autocommit=False, autoflush=False, bind=file_fleet)

        def hold_bike(bike_id):
            return lambda db: reservations.create_hold(
                db, customer, [bike_id], "2026-02-27", "4h", start_time="10:30", now=t0
            )

        results = race(Session, hold_bike(101), hold_bike(102))

        assert [result["status"] for result in results] == ["success", "success"]
        with Session() as db:
            assert db.query(Reservation).count() == 2


def failing_operation(error):
    @service_operation("saving booking")
    def operation(db):
        raise error

    return operation


@pytest.mark.unit
class TestWriteConflictMapping:
    """Database errors that mean another writer won"""

    @pytest.mark.parametrize(
        "error",
        [
            IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: reservations.booking_ref")),
            OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked")),
        ],
    )
    def test_maps_to_conflict(self, test_db_session, error):
        result = failing_operation(error)(test_db_session)

        assert result["status"] == "error"
        assert result["kind"] == "conflict"

    def test_other_database_errors_stay_internal(self, test_db_session):
        error = OperationalError("SELECT", {}, Exception("no such table: bikes"))

        result = failing_operation(error)(test_db_session)

        assert result == {"status": "error", "kind": "internal", "message": "Internal error while saving booking"}
