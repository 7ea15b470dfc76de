"""
Reservation transaction engine.

Every operation runs as one transaction that locks the affected rows, re-reads the
capacity counters under the lock, validates, mutates and commits. Any failure rolls
the whole transaction back, so callers never observe a partial change.

Lock order, everywhere: booking row first, then slot rows by ascending id.
"""
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

import structlog
from sqlalchemy.orm import Session

from slotkeeper.core.config import settings
from slotkeeper.core.errors import (
    AlreadyCancelled,
    InsufficientCapacity,
    InvalidRequest,
    LockTimeout,
    ServiceInactive,
    ServiceMismatch,
    SlotUnavailable,
)
from slotkeeper.db.locking import lock_booking, lock_slot, lock_slots_in_order, lock_wait_errors, set_lock_timeout
from slotkeeper.db.session import atomic
from slotkeeper.models.booking import (
    ACTIVE_STATUSES,
    BOOKING_STATUSES,
    CANCELLED,
    CHECKED_IN,
    COMPLETED,
    CONFIRMED,
    PENDING,
    Booking,
)
from slotkeeper.models.service import Service
from slotkeeper.models.slot import Slot
from slotkeeper.services.audit_service import log_audit
from slotkeeper.services.consistency_service import owning_service_id
from slotkeeper.services.hold_service import claim_hold, reservable_units

logger = structlog.get_logger("slotkeeper.reservations")

T = TypeVar("T")

# Allowed status changes that do not touch capacity. Cancelling goes through release().
STATUS_TRANSITIONS = {
    PENDING: {CONFIRMED},
    CONFIRMED: {CHECKED_IN, COMPLETED},
    CHECKED_IN: {COMPLETED},
}


@dataclass
class ReservationPayload:
    """Booking fields supplied by the caller; opaque to capacity accounting."""
    tenant_id: Optional[str] = None
    service_id: Optional[str] = None
    customer_name: str = ""
    customer_phone: str = ""
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    payment_status: str = "unpaid"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_units(units: int) -> None:
    if units is None or int(units) < 1:
        raise InvalidRequest("units must be >= 1")


def _admit(
    db: Session,
    slot: Slot,
    units: int,
    now: datetime,
    exclude_hold_id: str | None = None,
    check_blackout: bool = True,
) -> None:
    """Admission check on a locked slot. Raises without mutating anything."""
    if check_blackout and not slot.is_available:
        raise SlotUnavailable("Slot is not available")
    remaining = reservable_units(db, slot, now, exclude_hold_id)
    if remaining < units:
        raise InsufficientCapacity(remaining, units)


def _consume(slot: Slot, units: int, now: datetime) -> None:
    slot.available_capacity = int(slot.available_capacity) - units
    slot.booked_count = int(slot.booked_count) + units
    slot.updated_at = now


def _restore(slot: Slot, units: int, now: datetime) -> None:
    # Derive from original_capacity so a double release or an over-subscribed slot
    # can never push available_capacity above the template or booked_count below 0.
    booked = max(int(slot.booked_count) - units, 0)
    slot.booked_count = booked
    slot.available_capacity = max(int(slot.original_capacity) - booked, 0)
    slot.is_overbooked = booked > int(slot.original_capacity)
    slot.updated_at = now


def reserve(
    db: Session,
    slot_id: str,
    units: int,
    payload: ReservationPayload | None = None,
    status: str | None = None,
    hold_id: str | None = None,
    session_id: str | None = None,
    actor_id: str | None = None,
) -> Booking:
    """Consume `units` of the slot's capacity and create the booking, atomically."""
    _check_units(units)
    payload = payload or ReservationPayload()
    status = status or settings.DEFAULT_BOOKING_STATUS
    if status not in (PENDING, CONFIRMED):
        raise InvalidRequest("New bookings must be pending or confirmed")

    now = _utcnow()
    with lock_wait_errors(), atomic(db):
        set_lock_timeout(db)
        slot = lock_slot(db, slot_id)
        if payload.tenant_id and slot.tenant_id != payload.tenant_id:
            raise InvalidRequest("Slot does not belong to this tenant")

        service_id = owning_service_id(db, slot)
        if payload.service_id and payload.service_id != service_id:
            raise ServiceMismatch(payload.service_id, service_id)
        service = db.get(Service, service_id)
        if not service or not service.bookable:
            raise ServiceInactive("Service is not accepting bookings")

        hold = claim_hold(db, hold_id, session_id, slot_id, units, now) if hold_id else None
        _admit(db, slot, units, now, exclude_hold_id=hold.id if hold else None)

        _consume(slot, units, now)
        booking = Booking(
            id=str(uuid.uuid4()),
            tenant_id=slot.tenant_id,
            service_id=service_id,
            slot_id=slot.id,
            visitor_count=units,
            status=status,
            payment_status=payload.payment_status,
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            customer_email=payload.customer_email,
            notes=payload.notes,
            created_at=now,
            updated_at=now,
        )
        db.add(booking)
        if hold:
            db.delete(hold)
        log_audit(db, actor_id, "booking.reserve", "booking", booking.id, {"slot_id": slot.id, "units": units})

    logger.info("booking_reserved", booking_id=booking.id, slot_id=slot_id, units=units, remaining=slot.available_capacity)
    return booking


def release(db: Session, booking_id: str, actor_id: str | None = None) -> Booking:
    """Cancel the booking and return its units to the slot in the same transaction."""
    now = _utcnow()
    with lock_wait_errors(), atomic(db):
        set_lock_timeout(db)
        booking = lock_booking(db, booking_id)
        if booking.status == CANCELLED:
            raise AlreadyCancelled("Booking is already cancelled")
        if booking.status == COMPLETED:
            raise InvalidRequest("Completed bookings cannot be released")

        slot = lock_slot(db, booking.slot_id)
        units = int(booking.visitor_count)
        _restore(slot, units, now)

        booking.status = CANCELLED
        booking.cancelled_at = now
        booking.updated_at = now
        log_audit(db, actor_id, "booking.release", "booking", booking.id, {"slot_id": slot.id, "units": units})

    logger.info("booking_released", booking_id=booking_id, slot_id=slot.id, units=units, remaining=slot.available_capacity)
    return booking


def move(
    db: Session,
    booking_id: str,
    new_slot_id: str,
    units: int | None = None,
    actor_id: str | None = None,
    reason: str = "",
) -> Booking:
    """
    Reschedule a booking: restore its units on the old slot and reserve on the new
    one in a single transaction. If the new slot cannot take it, nothing changes.
    """
    if units is not None:
        _check_units(units)
    now = _utcnow()
    with lock_wait_errors(), atomic(db):
        set_lock_timeout(db)
        booking = lock_booking(db, booking_id)
        if booking.status == CANCELLED:
            raise AlreadyCancelled("Booking is cancelled")
        if booking.status not in ACTIVE_STATUSES:
            raise InvalidRequest(f"Cannot move a booking with status {booking.status}")

        old_units = int(booking.visitor_count)
        new_units = int(units) if units is not None else old_units
        old_slot_id = booking.slot_id
        if new_slot_id == old_slot_id and new_units == old_units:
            return booking

        slots = lock_slots_in_order(db, [old_slot_id, new_slot_id])
        old_slot, new_slot = slots[old_slot_id], slots[new_slot_id]

        target_service_id = owning_service_id(db, new_slot)
        if target_service_id != booking.service_id:
            raise ServiceMismatch(booking.service_id, target_service_id)
        if new_slot.tenant_id != booking.tenant_id:
            raise InvalidRequest("Target slot belongs to another tenant")

        # A blacked-out slot still lets a booking shrink in place
        grows = new_slot is not old_slot or new_units > old_units
        _restore(old_slot, old_units, now)
        _admit(db, new_slot, new_units, now, check_blackout=grows)
        _consume(new_slot, new_units, now)

        booking.slot_id = new_slot.id
        booking.visitor_count = new_units
        booking.updated_at = now
        log_audit(db, actor_id, "booking.move", "booking", booking.id, {
            "from_slot_id": old_slot_id,
            "to_slot_id": new_slot.id,
            "units": new_units,
            "reason": reason,
        })

    logger.info("booking_moved", booking_id=booking_id, from_slot_id=old_slot_id, to_slot_id=new_slot_id, units=new_units)
    return booking


def update_booking_status(db: Session, booking_id: str, status: str, actor_id: str | None = None) -> Booking:
    """Lifecycle changes that keep the booking's units consumed."""
    if status not in BOOKING_STATUSES:
        raise InvalidRequest(f"Unknown status {status}")
    if status == CANCELLED:
        return release(db, booking_id, actor_id=actor_id)
    with lock_wait_errors(), atomic(db):
        set_lock_timeout(db)
        booking = lock_booking(db, booking_id)
        if booking.status == CANCELLED:
            raise AlreadyCancelled("Booking is cancelled")
        if booking.status != status:
            if status not in STATUS_TRANSITIONS.get(booking.status, set()):
                raise InvalidRequest(f"Cannot change status from {booking.status} to {status}")
            log_audit(db, actor_id, "booking.status", "booking", booking.id, {"from": booking.status, "to": status})
            booking.status = status
            booking.updated_at = _utcnow()
    return booking


def set_slot_availability(db: Session, slot_id: str, is_available: bool, actor_id: str | None = None, reason: str = "") -> Slot:
    with lock_wait_errors(), atomic(db):
        set_lock_timeout(db)
        slot = lock_slot(db, slot_id)
        if slot.is_available != is_available:
            slot.is_available = is_available
            slot.updated_at = _utcnow()
            log_audit(db, actor_id, "slot.set_availability", "slot", slot.id, {"is_available": is_available, "reason": reason})
    return slot


def call_with_lock_retry(
    fn: Callable[[], T],
    attempts: int | None = None,
    base_delay_ms: int | None = None,
) -> T:
    """Run fn, retrying only on LockTimeout with exponential backoff."""
    attempts = max(1, attempts or settings.LOCK_RETRY_ATTEMPTS)
    delay = (base_delay_ms if base_delay_ms is not None else settings.LOCK_RETRY_BASE_DELAY_MS) / 1000
    for attempt in range(attempts):
        try:
            return fn()
        except LockTimeout:
            if attempt == attempts - 1:
                raise
            logger.info("lock_busy_retry", attempt=attempt + 1)
            time.sleep(delay * (2 ** attempt))
    raise AssertionError("unreachable")
