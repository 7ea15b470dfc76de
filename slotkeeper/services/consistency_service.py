"""
Consistency guard: a booking's service_id must equal the service that owns its
slot's shift. Drift appears when a shift is reassigned to another service after
bookings exist on its slots.

Reserve and Move reject on drift; only repair_booking / scan_tenant(repair=True)
change a booking's service_id, and each repair is audited.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from slotkeeper.core.errors import AlreadyCancelled, BookingNotFound, ShiftNotFound, SlotNotFound
from slotkeeper.db.locking import lock_booking, lock_wait_errors, set_lock_timeout
from slotkeeper.db.session import atomic
from slotkeeper.models.booking import ACTIVE_STATUSES, Booking
from slotkeeper.models.shift import Shift
from slotkeeper.models.slot import Slot
from slotkeeper.services.audit_service import log_audit

logger = structlog.get_logger("slotkeeper.consistency")


def owning_service_id(db: Session, slot: Slot) -> str:
    """The service that owns the slot's shift now; may differ from slot.service_id after a reassignment."""
    shift = db.get(Shift, slot.shift_id)
    if not shift:
        raise ShiftNotFound(f"Shift {slot.shift_id} not found")
    return shift.service_id


@dataclass
class ConsistencyResult:
    booking_id: str
    expected_service_id: str              # recorded on the booking
    actual_service_id: Optional[str]      # owner of the slot's shift today

    @property
    def consistent(self) -> bool:
        return self.expected_service_id == self.actual_service_id


def _result_for(db: Session, booking: Booking) -> ConsistencyResult:
    slot = db.get(Slot, booking.slot_id)
    if not slot:
        raise SlotNotFound(f"Slot {booking.slot_id} not found")
    return ConsistencyResult(booking.id, booking.service_id, owning_service_id(db, slot))


def check_booking(db: Session, booking_id: str) -> ConsistencyResult:
    # Plain read; repair_booking re-checks under the booking lock
    with lock_wait_errors(), atomic(db):
        booking = db.get(Booking, booking_id, populate_existing=True)
        if not booking:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return _result_for(db, booking)


def repair_booking(db: Session, booking_id: str, actor_id: str | None = None) -> ConsistencyResult:
    """Point the booking at the service that owns its slot now. No capacity changes."""
    with lock_wait_errors(), atomic(db):
        set_lock_timeout(db)
        booking = lock_booking(db, booking_id)
        if booking.status not in ACTIVE_STATUSES:
            raise AlreadyCancelled(f"Booking is {booking.status}; only active bookings are repaired")
        result = _result_for(db, booking)
        if not result.consistent:
            booking.service_id = result.actual_service_id
            booking.updated_at = datetime.now(timezone.utc)
            log_audit(db, actor_id, "booking.service_repair", "booking", booking.id, {
                "from_service_id": result.expected_service_id,
                "to_service_id": result.actual_service_id,
            })
            logger.warning(
                "booking_service_repaired",
                booking_id=booking.id,
                from_service_id=result.expected_service_id,
                to_service_id=result.actual_service_id,
            )
    return result


@dataclass
class ScanResult:
    tenant_id: str
    scanned: int
    mismatches: list[ConsistencyResult]
    repaired: int = 0


def scan_tenant(db: Session, tenant_id: str, repair: bool = False, actor_id: str | None = None) -> ScanResult:
    """Report, and with repair=True fix, every active booking of a tenant whose service drifted from its slot's shift."""
    with lock_wait_errors(), atomic(db):
        rows = (
            db.query(Booking.id, Booking.service_id, Shift.service_id)
            .join(Slot, Slot.id == Booking.slot_id)
            .join(Shift, Shift.id == Slot.shift_id)
            .filter(Booking.tenant_id == tenant_id, Booking.status.in_(ACTIVE_STATUSES))
            .order_by(Booking.id)
            .all()
        )
    result = ScanResult(
        tenant_id=tenant_id,
        scanned=len(rows),
        mismatches=[ConsistencyResult(bid, recorded, owner) for bid, recorded, owner in rows if recorded != owner],
    )
    if result.mismatches:
        logger.warning("booking_service_drift", tenant_id=tenant_id, count=len(result.mismatches))
    if not repair:
        return result

    for m in result.mismatches:
        try:
            # Re-checked under the booking lock; a concurrent repair may have settled it already.
            if not repair_booking(db, m.booking_id, actor_id=actor_id).consistent:
                result.repaired += 1
        except AlreadyCancelled:
            continue
    return result
