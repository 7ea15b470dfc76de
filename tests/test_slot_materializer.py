from datetime import time, timedelta

import pytest
from sqlalchemy import func, select

from slotkeeper.core.errors import InvalidRequest, ServiceInactive, ShiftNotFound
from slotkeeper.models.slot import Slot
from slotkeeper.services import catalog_service
from slotkeeper.services.slot_materializer import materialize_horizon, materialize_slots


def _slot_count(db, shift_id):
    n = db.execute(select(func.count(Slot.id)).where(Slot.shift_id == shift_id)).scalar()
    db.commit()
    return n


def test_overlapping_runs_do_not_duplicate_slots(db, future_day):
    service = catalog_service.create_service(db, "tenant-a", "Tour", capacity_per_slot=4)
    shift = catalog_service.create_shift(db, service.id, [0, 1, 2, 3, 4, 5, 6], time(9, 0), time(10, 0))

    first = materialize_slots(db, shift.id, future_day, future_day + timedelta(days=6))
    second = materialize_slots(db, shift.id, future_day + timedelta(days=3), future_day + timedelta(days=9))

    assert first == 7
    assert second == 3
    assert _slot_count(db, shift.id) == 10


def test_only_shift_weekdays_are_materialized(db, future_day):
    service = catalog_service.create_service(db, "tenant-a", "Tour", capacity_per_slot=2)
    shift = catalog_service.create_shift(db, service.id, [0, 2], time(14, 0), time(15, 30))

    created = materialize_slots(db, shift.id, future_day, future_day + timedelta(days=13))

    assert created == 4
    slots = db.execute(select(Slot).where(Slot.shift_id == shift.id)).scalars().all()
    db.commit()
    assert {s.slot_date.weekday() for s in slots} == {0, 2}
    for s in slots:
        assert s.original_capacity == 2
        assert s.available_capacity == 2
        assert s.booked_count == 0
        assert s.is_available is True
        assert s.start_time == time(14, 0)
        assert s.end_time == time(15, 30)
        assert s.service_id == service.id
        assert s.tenant_id == "tenant-a"


def test_end_before_start_is_rejected(db, future_day):
    service = catalog_service.create_service(db, "tenant-a", "Tour", capacity_per_slot=2)
    shift = catalog_service.create_shift(db, service.id, [0], time(9, 0), time(10, 0))

    with pytest.raises(InvalidRequest):
        materialize_slots(db, shift.id, future_day, future_day - timedelta(days=1))


def test_range_longer_than_limit_is_rejected(db, future_day):
    service = catalog_service.create_service(db, "tenant-a", "Tour", capacity_per_slot=2)
    shift = catalog_service.create_shift(db, service.id, [0], time(9, 0), time(10, 0))

    with pytest.raises(InvalidRequest):
        materialize_slots(db, shift.id, future_day, future_day + timedelta(days=365))
    assert _slot_count(db, shift.id) == 0


def test_archived_service_aborts_without_writing(db, future_day):
    service = catalog_service.create_service(db, "tenant-a", "Tour", capacity_per_slot=2)
    shift = catalog_service.create_shift(db, service.id, [0, 1, 2, 3, 4, 5, 6], time(9, 0), time(10, 0))
    catalog_service.archive_service(db, service.id)

    with pytest.raises(ServiceInactive):
        materialize_slots(db, shift.id, future_day, future_day + timedelta(days=6))
    assert _slot_count(db, shift.id) == 0


def test_inactive_shift_and_missing_shift(db, future_day):
    service = catalog_service.create_service(db, "tenant-a", "Tour", capacity_per_slot=2)
    shift = catalog_service.create_shift(db, service.id, [0], time(9, 0), time(10, 0))
    catalog_service.deactivate_shift(db, shift.id)

    with pytest.raises(InvalidRequest):
        materialize_slots(db, shift.id, future_day, future_day + timedelta(days=6))
    with pytest.raises(ShiftNotFound):
        materialize_slots(db, "missing", future_day, future_day)


def test_horizon_covers_active_shifts_of_bookable_services(db, future_day):
    live = catalog_service.create_service(db, "tenant-a", "Live", capacity_per_slot=3)
    live_shift = catalog_service.create_shift(db, live.id, [0, 1, 2, 3, 4, 5, 6], time(9, 0), time(10, 0))
    gone = catalog_service.create_service(db, "tenant-a", "Gone", capacity_per_slot=3)
    gone_shift = catalog_service.create_shift(db, gone.id, [0, 1, 2, 3, 4, 5, 6], time(9, 0), time(10, 0))
    catalog_service.archive_service(db, gone.id)

    result = materialize_horizon(db, today=future_day, horizon_days=14)

    assert result["shifts"] == 1
    assert result["created"] == 14
    assert result["errors"] == []
    assert _slot_count(db, live_shift.id) == 14
    assert _slot_count(db, gone_shift.id) == 0

    again = materialize_horizon(db, today=future_day, horizon_days=14)
    assert again["created"] == 0
