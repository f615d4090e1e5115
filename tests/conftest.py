from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stayrefunds.database import Base

# Import models so Base.metadata is populated for create_all.
import stayrefunds.models  # noqa: F401
from stayrefunds.models import Booking, Tenant

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

STANDARD_TIERS = [
    {"days_before": 7, "refund_percentage": 100, "label": "Full refund 7+ days out"},
    {"days_before": 3, "refund_percentage": 50, "label": "Half refund 3-6 days out"},
    {"days_before": 0, "refund_percentage": 0, "label": "No refund inside 3 days"},
]


@pytest.fixture(scope="session")
def _unit_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite defers BEGIN until the first DML; take over so SAVEPOINTs nest correctly.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def unit_db(_unit_engine) -> Session:
    """
    Provide a session inside an outer transaction that is rolled back after the test.

    Service-level commits only release a savepoint, so each test starts clean.
    """
    connection = _unit_engine.connect()
    transaction = connection.begin()
    TestSession = sessionmaker(
        bind=connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
        autoflush=False,
    )
    session = TestSession()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def tenant(unit_db: Session) -> Tenant:
    tenant = Tenant(
        business_name="Seaside Guesthouse",
        cancellation_policies=STANDARD_TIERS,
        paystack_mode="test",
        paystack_test_secret_key="sk_test_abc123",
    )
    unit_db.add(tenant)
    unit_db.flush()
    return tenant


@pytest.fixture
def make_booking(unit_db: Session, tenant: Tenant) -> Callable[..., Booking]:
    def _make(**overrides: Any) -> Booking:
        values: dict[str, Any] = {
            "tenant_id": tenant.id,
            "customer_id": "01HZZZZZZZZZZZZZZZZZZZZZZC",
            "guest_name": "Thandi Mokoena",
            "guest_email": "thandi@example.com",
            "room_name": "Ocean View Suite",
            "check_in": date(2026, 3, 20),
            "check_out": date(2026, 3, 23),
            "total_amount": Decimal("1000.00"),
            "currency": "ZAR",
            "status": "cancelled",
            "payment_status": "paid",
            "payment_method": "paystack",
            "payment_reference": "T1234567890",
            # 10 days before check-in
            "cancelled_at": datetime(2026, 3, 10, 0, 0, tzinfo=timezone.utc),
        }
        values.update(overrides)
        booking = Booking(**values)
        unit_db.add(booking)
        unit_db.flush()
        return booking

    return _make
