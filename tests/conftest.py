"""
Pytest configuration and fixtures
"""
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import bike_rentals.models  # noqa: F401
from bike_rentals.database import Base, make_engine
from bike_rentals.errors import GatewayError
from bike_rentals.models import Bike
from bike_rentals.services.payment_gateway import ALREADY_VOIDED, GatewayResponse


# Use in-memory database for testing; StaticPool keeps one shared connection
TEST_DATABASE_URL = "sqlite://"

# 2026-02-20 09:00 in America/Edmonton (MST, UTC-7), as naive UTC
T0 = datetime(2026, 2, 20, 16, 0)


@pytest.fixture(scope="function")
def test_engine():
    """Create test database engine"""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_db_session(test_engine):
    """Create test database session"""
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestSessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def file_engine(tmp_path):
    """File-backed engine built the way the application builds its own"""
    engine = make_engine(f"sqlite:///{tmp_path / 'bike_rentals.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def t0():
    """Fixed 'now' for deterministic tests"""
    return T0


def _bike(bike_id, name, type_, size="M", status="available", prices=("25", "40", "60", "50"), deposit="100"):
    price_2h, price_4h, price_8h, per_day = prices
    return Bike(
        id=bike_id,
        name=name,
        type=type_,
        size=size,
        status=status,
        price_2h=Decimal(price_2h),
        price_4h=Decimal(price_4h),
        price_8h=Decimal(price_8h),
        price_per_day=Decimal(per_day),
        deposit_amount=Decimal(deposit),
        features=["Lock", "Helmet"],
    )


@pytest.fixture
def fleet(test_db_session):
    """Create sample fleet: two hybrids, one mountain bike, one e-bike in repair"""
    bikes = [
        _bike(101, "Trek FX 2", "hybrid"),
        _bike(102, "Trek FX 3", "hybrid", size="L", prices=("30", "45", "65", "55")),
        _bike(201, "Rocky Mountain Growler", "mountain", prices=("35", "55", "80", "70"), deposit="200"),
        _bike(301, "Rad Power City", "e-bike", status="in-repair", prices=("45", "70", "100", "90"), deposit="300"),
    ]
    test_db_session.add_all(bikes)
    test_db_session.commit()
    return {bike.id: bike for bike in bikes}


@pytest.fixture
def file_fleet(file_engine):
    """Two hybrids in the file-backed database"""
    with sessionmaker(bind=file_engine)() as session:
        session.add_all([_bike(101, "Trek FX 2", "hybrid"), _bike(102, "Trek FX 3", "hybrid", size="L")])
        session.commit()
    return file_engine


@pytest.fixture
def customer():
    """Customer draft as sent by the booking form"""
    return {
        "full_name": "Jordan Lee",
        "email": "Jordan.Lee@example.com",
        "phone": "+14035550100",
    }


class FakeGateway:
    """In-memory stand-in for the payment gateway"""

    def __init__(self):
        self.captures = []
        self.voids = []
        self.fail_capture = False
        self.fail_void = False
        self.already_voided = False
        self._counter = 0

    def capture(self, token, amount):
        if self.fail_capture:
            raise GatewayError("Payment gateway timed out", code="timeout")
        self._counter += 1
        txn = f"txn-{self._counter}"
        self.captures.append((token, amount, txn))
        return GatewayResponse(transaction_id=txn, message="CAPTURED")

    def void(self, transaction_id):
        if self.fail_void:
            raise GatewayError("Payment gateway unavailable", code="unavailable")
        self.voids.append(transaction_id)
        if self.already_voided:
            return GatewayResponse(transaction_id=transaction_id, message="ALREADY VOIDED", code=ALREADY_VOIDED)
        return GatewayResponse(transaction_id=transaction_id, message="VOIDED")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_hold(test_db_session, fleet, customer, t0):
    """Factory creating a hold; returns the result envelope"""
    from bike_rentals.services.reservations import create_hold

    def make(bike_ids=(101,), date="2026-02-27", duration="4h", start_time="10:30", end_date=None, now=None):
        return create_hold(
            test_db_session,
            customer,
            list(bike_ids),
            date,
            duration,
            start_time=start_time,
            end_date=end_date,
            now=now or t0,
        )

    return make


@pytest.fixture
def make_paid(test_db_session, make_hold, t0):
    """Factory creating a paid reservation; returns its id"""
    from bike_rentals.services.reservations import mark_paid

    def make(bike_ids=(101,), **kwargs):
        hold = make_hold(bike_ids, **kwargs)
        assert hold["status"] == "success", hold
        paid = mark_paid(test_db_session, hold["reservation_id"], "tok_visa_4242", now=t0)
        assert paid["status"] == "success", paid
        return hold["reservation_id"]

    return make


# Test markers
def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
