from datetime import datetime, time, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from slotkeeper.db.session import Base, make_engine
from slotkeeper.models.audit_log import AuditLog  # noqa: F401
from slotkeeper.models.booking import Booking  # noqa: F401
from slotkeeper.models.booking_hold import BookingHold  # noqa: F401
from slotkeeper.models.service import Service  # noqa: F401
from slotkeeper.models.shift import Shift  # noqa: F401
from slotkeeper.models.slot import Slot
from slotkeeper.services import catalog_service
from slotkeeper.services.slot_materializer import materialize_slots

ALL_DAYS = [0, 1, 2, 3, 4, 5, 6]


@pytest.fixture
def session_factory(tmp_path):
    # Same engine setup as production so SQLite serialises writers like row locks do
    engine = make_engine(f"sqlite:///{tmp_path / 'test_slotkeeper.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def future_day():
    """A date comfortably after today in every timezone."""
    return datetime.now(timezone.utc).date() + timedelta(days=10)


@pytest.fixture
def make_slots(db, future_day):
    """Create a service + all-week shift and materialize `days` slots from future_day."""

    def _make(capacity: int = 5, days: int = 1, tenant_id: str = "tenant-a", service=None):
        service = service or catalog_service.create_service(db, tenant_id, "Tour", capacity_per_slot=capacity)
        shift = catalog_service.create_shift(db, service.id, ALL_DAYS, time(9, 0), time(10, 0))
        materialize_slots(db, shift.id, future_day, future_day + timedelta(days=days - 1))
        slots = db.query(Slot).filter(Slot.shift_id == shift.id).order_by(Slot.slot_date).all()
        db.commit()
        return service, shift, slots

    return _make


@pytest.fixture
def fresh(db):
    """Re-read a row, then end the read transaction so no other session is kept waiting."""

    def _fresh(model, obj_id):
        obj = db.get(model, obj_id, populate_existing=True)
        db.commit()
        return obj

    return _fresh
