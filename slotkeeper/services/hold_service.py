import uuid
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from slotkeeper.core.config import settings
from slotkeeper.core.errors import HoldInvalid, HoldNotFound, InsufficientCapacity, InvalidRequest, SlotUnavailable
from slotkeeper.db.locking import lock_slot, lock_wait_errors, set_lock_timeout
from slotkeeper.db.session import atomic
from slotkeeper.models.booking_hold import BookingHold
from slotkeeper.models.slot import Slot

logger = structlog.get_logger("slotkeeper.holds")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def held_units(db: Session, slot_id: str, now: datetime, exclude_hold_id: str | None = None) -> int:
    """Units claimed by unexpired holds on a slot. Call with the slot row locked."""
    q = db.query(func.coalesce(func.sum(BookingHold.reserved_capacity), 0)).filter(
        BookingHold.slot_id == slot_id,
        BookingHold.expires_at > now,
    )
    if exclude_hold_id:
        q = q.filter(BookingHold.id != exclude_hold_id)
    return int(q.scalar() or 0)


def reservable_units(db: Session, slot: Slot, now: datetime, exclude_hold_id: str | None = None) -> int:
    return max(int(slot.available_capacity) - held_units(db, slot.id, now, exclude_hold_id), 0)


def claim_hold(db: Session, hold_id: str, session_id: str | None, slot_id: str, units: int, now: datetime) -> BookingHold:
    """Validate a hold the caller wants to convert into a booking. Slot must already be locked."""
    hold = db.get(BookingHold, hold_id)
    if not hold:
        raise HoldInvalid("Hold not found")
    if _as_utc(hold.expires_at) <= now:
        raise HoldInvalid("Hold has expired")
    if not session_id or hold.session_id != session_id:
        raise HoldInvalid("Hold does not belong to this session")
    if hold.slot_id != slot_id:
        raise HoldInvalid("Hold does not match the slot")
    if hold.reserved_capacity < units:
        raise HoldInvalid(f"Hold covers {hold.reserved_capacity} units, {units} requested")
    return hold


def acquire_hold(db: Session, slot_id: str, session_id: str, units: int, seconds: int | None = None) -> BookingHold:
    if units < 1:
        raise InvalidRequest("units must be >= 1")
    if not session_id:
        raise InvalidRequest("session_id is required")
    now = _utcnow()
    with lock_wait_errors(), atomic(db):
        set_lock_timeout(db)
        slot = lock_slot(db, slot_id)
        if not slot.is_available:
            raise SlotUnavailable("Slot is not available")
        remaining = reservable_units(db, slot, now)
        if remaining < units:
            raise InsufficientCapacity(remaining, units)
        hold = BookingHold(
            id=str(uuid.uuid4()),
            slot_id=slot_id,
            session_id=session_id,
            reserved_capacity=units,
            expires_at=now + timedelta(seconds=seconds or settings.HOLD_SECONDS),
        )
        db.add(hold)
    logger.info("hold_acquired", slot_id=slot_id, hold_id=hold.id, units=units)
    return hold


def release_hold(db: Session, hold_id: str, session_id: str) -> None:
    with lock_wait_errors(), atomic(db):
        hold = db.get(BookingHold, hold_id)
        if not hold or hold.session_id != session_id:
            raise HoldNotFound("Hold not found")
        db.delete(hold)
    logger.info("hold_released", hold_id=hold_id)


def purge_expired_holds(db: Session, now: datetime | None = None) -> int:
    now = now or _utcnow()
    with lock_wait_errors(), atomic(db):
        purged = db.query(BookingHold).filter(BookingHold.expires_at <= now).delete(synchronize_session=False)
    if purged:
        logger.info("expired_holds_purged", count=purged)
    return int(purged or 0)
