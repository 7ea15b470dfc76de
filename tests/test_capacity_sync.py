from datetime import datetime, time, timedelta, timezone

import pytest

from slotkeeper.core.config import settings
from slotkeeper.core.errors import InvalidRequest, LockTimeout
from slotkeeper.core.timeutil import slot_clock
from slotkeeper.models.audit_log import AuditLog
from slotkeeper.models.booking import CANCELLED, COMPLETED, CONFIRMED, Booking
from slotkeeper.models.service import Service
from slotkeeper.models.slot import Slot
from slotkeeper.services import catalog_service
from slotkeeper.services.capacity_sync import recalculate_slot_counters, synchronize_capacity
from slotkeeper.services.reservation_service import call_with_lock_retry, release, reserve, update_booking_status
from slotkeeper.services.slot_materializer import materialize_slots


def test_lowering_capacity_clamps_and_never_cancels(db, make_slots, fresh):
    service, _, (slot,) = make_slots(capacity=5)
    booking = reserve(db, slot.id, 3)

    _, sync = catalog_service.update_service(db, service.id, {"capacity_per_slot": 2})

    assert sync.clamped_count == 1
    assert sync.clamped_slot_ids == [slot.id]
    s = fresh(Slot, slot.id)
    assert (s.original_capacity, s.available_capacity, s.booked_count) == (2, 0, 3)
    assert s.is_overbooked is True
    b = fresh(Booking, booking.id)
    assert b.status != CANCELLED
    assert b.visitor_count == 3


def test_raising_capacity_frees_units(db, make_slots, fresh):
    service, _, slots = make_slots(capacity=4, days=3)
    reserve(db, slots[0].id, 3)

    _, sync = catalog_service.update_service(db, service.id, {"capacity_per_slot": 6})

    assert sync.updated_count == 3
    assert sync.clamped_count == 0
    s = fresh(Slot, slots[0].id)
    assert (s.original_capacity, s.available_capacity, s.booked_count) == (6, 3, 3)
    assert fresh(Slot, slots[1].id).available_capacity == 6


def test_release_after_clamp_clears_overbooked(db, make_slots, fresh):
    service, _, (slot,) = make_slots(capacity=5)
    big = reserve(db, slot.id, 3)
    small = reserve(db, slot.id, 1)
    catalog_service.update_service(db, service.id, {"capacity_per_slot": 2})

    release(db, small.id)
    s = fresh(Slot, slot.id)
    assert (s.booked_count, s.available_capacity, s.is_overbooked) == (3, 0, True)

    release(db, big.id)
    s = fresh(Slot, slot.id)
    assert (s.booked_count, s.available_capacity, s.is_overbooked) == (0, 2, False)


def test_past_slots_are_left_alone(db, fresh):
    service = catalog_service.create_service(db, "tenant-a", "Tour", capacity_per_slot=5)
    shift = catalog_service.create_shift(db, service.id, [0, 1, 2, 3, 4, 5, 6], time(9, 0), time(10, 0))
    today = datetime.now(timezone.utc).date()
    materialize_slots(db, shift.id, today - timedelta(days=3), today + timedelta(days=3))
    slots = db.query(Slot).filter(Slot.shift_id == shift.id).all()
    db.commit()

    synchronize_capacity(db, service.id)  # no-op: capacity unchanged
    catalog_service.update_service(db, service.id, {"capacity_per_slot": 8})

    for s in slots:
        current = fresh(Slot, s.id)
        if s.slot_date < today:
            assert current.original_capacity == 5
        elif s.slot_date > today:
            assert current.original_capacity == 8


def test_unchanged_capacity_reports_no_updates(db, make_slots):
    service, _, _ = make_slots(capacity=3, days=2)

    result = synchronize_capacity(db, service.id)

    assert result.updated_count == 0
    assert result.clamped_count == 0


def test_sync_is_audited(db, make_slots):
    service, _, _ = make_slots(capacity=3)
    catalog_service.update_service(db, service.id, {"capacity_per_slot": 4}, actor_id="op-1")

    rows = db.query(AuditLog).filter(AuditLog.action == "service.capacity_sync").all()
    db.commit()
    assert len(rows) == 1
    assert rows[0].actor_id == "op-1"
    assert rows[0].entity_id == service.id


def test_name_only_edit_does_not_sync(db, make_slots):
    service, _, _ = make_slots(capacity=3)

    updated, sync = catalog_service.update_service(db, service.id, {"name": "Evening tour"})

    assert updated.name == "Evening tour"
    assert sync is None


def test_recalculate_repairs_drifted_counters(db, make_slots, fresh):
    service, _, (slot,) = make_slots(capacity=5)
    reserve(db, slot.id, 2)
    s = db.get(Slot, slot.id)
    s.booked_count = 4
    s.available_capacity = 1
    db.commit()

    corrected = recalculate_slot_counters(db, service_id=service.id)

    assert corrected == [slot.id]
    s = fresh(Slot, slot.id)
    assert (s.booked_count, s.available_capacity) == (2, 3)
    assert recalculate_slot_counters(db, slot_ids=[slot.id]) == []


def test_recalculate_keeps_completed_bookings_counted(db, make_slots, fresh):
    service, _, (slot,) = make_slots(capacity=3)
    booking = reserve(db, slot.id, 2, status=CONFIRMED)
    update_booking_status(db, booking.id, COMPLETED)

    assert recalculate_slot_counters(db, service_id=service.id) == []
    s = fresh(Slot, slot.id)
    assert (s.original_capacity, s.available_capacity, s.booked_count) == (3, 1, 2)


def test_capacity_edit_retried_after_lock_timeout_still_reconciles(db, make_slots, fresh, monkeypatch):
    service, _, (slot,) = make_slots(capacity=5)
    reserve(db, slot.id, 3)
    real = catalog_service.reconcile_capacity
    calls = []

    def busy_once(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise LockTimeout("Slot is busy, try again")
        return real(*args, **kwargs)

    monkeypatch.setattr(catalog_service, "reconcile_capacity", busy_once)

    updated, sync = call_with_lock_retry(
        lambda: catalog_service.update_service(db, service.id, {"capacity_per_slot": 2}),
        base_delay_ms=0,
    )

    assert len(calls) == 2
    assert updated.capacity_per_slot == 2
    assert sync is not None
    assert sync.clamped_slot_ids == [slot.id]
    s = fresh(Slot, slot.id)
    assert (s.original_capacity, s.available_capacity, s.booked_count) == (2, 0, 3)
    assert s.is_overbooked is True


def test_lock_timeout_during_reconcile_rolls_back_the_edit(db, make_slots, fresh, monkeypatch):
    service, _, (slot,) = make_slots(capacity=5)

    def busy(*args, **kwargs):
        raise LockTimeout("Slot is busy, try again")

    monkeypatch.setattr(catalog_service, "reconcile_capacity", busy)

    with pytest.raises(LockTimeout):
        catalog_service.update_service(db, service.id, {"capacity_per_slot": 2})

    assert fresh(Service, service.id).capacity_per_slot == 5
    assert fresh(Slot, slot.id).original_capacity == 5


def test_slot_clock_uses_configured_timezone(monkeypatch):
    monkeypatch.setattr(settings, "SLOT_TIMEZONE", "America/New_York")

    local = slot_clock(datetime(2026, 1, 2, 0, 30, tzinfo=timezone.utc))

    assert (local.date().isoformat(), local.hour, local.minute) == ("2026-01-01", 19, 30)


def test_started_slots_are_judged_on_the_slot_clock(db, future_day, fresh, monkeypatch):
    monkeypatch.setattr(settings, "SLOT_TIMEZONE", "America/New_York")
    service = catalog_service.create_service(db, "tenant-a", "Night tour", capacity_per_slot=5)
    shift = catalog_service.create_shift(db, service.id, [0, 1, 2, 3, 4, 5, 6], time(21, 0), time(22, 0))
    materialize_slots(db, shift.id, future_day, future_day)
    (slot,) = db.query(Slot).filter(Slot.shift_id == shift.id).all()
    s = db.get(Service, service.id)
    s.capacity_per_slot = 7
    db.commit()
    next_day = future_day + timedelta(days=1)

    # 02:30 UTC is 21:30 or 22:30 the evening before in New York: the slot has started
    started = synchronize_capacity(db, service.id, now=datetime.combine(next_day, time(2, 30), tzinfo=timezone.utc))
    assert started.updated_count == 0
    assert fresh(Slot, slot.id).original_capacity == 5

    # 00:30 UTC is 19:30 or 20:30 the evening before: still ahead
    upcoming = synchronize_capacity(db, service.id, now=datetime.combine(next_day, time(0, 30), tzinfo=timezone.utc))
    assert upcoming.updated_count == 1
    assert fresh(Slot, slot.id).original_capacity == 7


def test_shift_shorter_than_service_duration_is_rejected(db):
    service = catalog_service.create_service(db, "tenant-a", "Long tour", capacity_per_slot=5, duration_minutes=90)

    with pytest.raises(InvalidRequest):
        catalog_service.create_shift(db, service.id, [0, 1, 2, 3, 4, 5, 6], time(9, 0), time(10, 0))

    shift = catalog_service.create_shift(db, service.id, [0, 1, 2, 3, 4, 5, 6], time(9, 0), time(10, 30))
    with pytest.raises(InvalidRequest):
        catalog_service.update_shift(db, shift.id, {"end_time": time(10, 0)})


def test_duration_edit_must_fit_active_shifts(db, make_slots, fresh):
    service, _, _ = make_slots(capacity=3)

    with pytest.raises(InvalidRequest):
        catalog_service.update_service(db, service.id, {"duration_minutes": 75})
    assert fresh(Service, service.id).duration_minutes == 60

    updated, sync = catalog_service.update_service(db, service.id, {"duration_minutes": 45})
    assert updated.duration_minutes == 45
    assert sync is None
