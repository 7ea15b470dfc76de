import pytest

from slotkeeper.core.errors import AlreadyCancelled, BookingNotFound, ServiceMismatch
from slotkeeper.models.audit_log import AuditLog
from slotkeeper.models.booking import Booking
from slotkeeper.services import catalog_service
from slotkeeper.services.consistency_service import check_booking, repair_booking, scan_tenant
from slotkeeper.services.reservation_service import move, release, reserve


@pytest.fixture
def drifted(db, make_slots):
    """A booking made under service A whose shift has since been handed to service B."""
    service_a, shift, (slot, other_slot) = make_slots(capacity=4, days=2)
    service_b = catalog_service.create_service(db, "tenant-a", "Other", capacity_per_slot=4)
    booking = reserve(db, slot.id, 1)
    catalog_service.update_shift(db, shift.id, {"service_id": service_b.id})
    return service_a, service_b, booking, other_slot


def test_check_reports_mismatch_after_shift_reassignment(db, drifted):
    service_a, service_b, booking, _ = drifted

    result = check_booking(db, booking.id)

    assert result.consistent is False
    assert result.expected_service_id == service_a.id
    assert result.actual_service_id == service_b.id


def test_repair_points_booking_at_current_owner(db, drifted, fresh):
    _, service_b, booking, _ = drifted

    before = repair_booking(db, booking.id, actor_id="op-1")

    assert before.consistent is False
    assert fresh(Booking, booking.id).service_id == service_b.id
    assert check_booking(db, booking.id).consistent is True
    audit = db.query(AuditLog).filter(AuditLog.action == "booking.service_repair").all()
    db.commit()
    assert len(audit) == 1
    assert audit[0].actor_id == "op-1"


def test_move_refuses_to_propagate_drift(db, drifted):
    _, _, booking, other_slot = drifted

    with pytest.raises(ServiceMismatch):
        move(db, booking.id, other_slot.id)

    repair_booking(db, booking.id)
    assert move(db, booking.id, other_slot.id).slot_id == other_slot.id


def test_consistent_booking_needs_no_repair(db, make_slots):
    _, _, (slot,) = make_slots(capacity=2)
    booking = reserve(db, slot.id, 1)

    assert check_booking(db, booking.id).consistent is True
    assert repair_booking(db, booking.id).consistent is True


def test_cancelled_bookings_are_not_repaired(db, drifted):
    _, _, booking, _ = drifted
    release(db, booking.id)

    with pytest.raises(AlreadyCancelled):
        repair_booking(db, booking.id)


def test_missing_booking(db):
    with pytest.raises(BookingNotFound):
        check_booking(db, "nope")


def test_scan_reports_then_repairs_tenant(db, drifted, make_slots, fresh):
    _, service_b, booking, _ = drifted
    _, _, (clean_slot,) = make_slots(capacity=2)
    reserve(db, clean_slot.id, 1)

    report = scan_tenant(db, "tenant-a")
    assert report.scanned == 2
    assert [m.booking_id for m in report.mismatches] == [booking.id]
    assert report.repaired == 0
    assert fresh(Booking, booking.id).service_id != service_b.id

    fixed = scan_tenant(db, "tenant-a", repair=True, actor_id="op-1")
    assert fixed.repaired == 1
    assert fresh(Booking, booking.id).service_id == service_b.id
    assert scan_tenant(db, "tenant-a").mismatches == []


def test_scan_is_scoped_to_tenant(db, drifted):
    report = scan_tenant(db, "tenant-b")
    assert report.scanned == 0
    assert report.mismatches == []
