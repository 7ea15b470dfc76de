"""
Row-level pessimistic locking for slot and booking rows.

All capacity checks happen on values read *after* the lock is granted. Multi-slot
operations lock in ascending slot id order so two concurrent moves that swap slots
cannot deadlock. Lock waits are bounded by LOCK_TIMEOUT_MS and surface as LockTimeout.
"""
from contextlib import contextmanager
from typing import Iterable

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from slotkeeper.core.config import settings
from slotkeeper.core.errors import BookingNotFound, LockTimeout, SlotNotFound
from slotkeeper.models.booking import Booking
from slotkeeper.models.slot import Slot

# Postgres SQLSTATE for lock_not_available
PG_LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_wait_error(exc: OperationalError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode == PG_LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(exc.orig).lower()


@contextmanager
def lock_wait_errors():
    """Translate driver lock-wait failures into LockTimeout."""
    try:
        yield
    except OperationalError as exc:
        if _is_lock_wait_error(exc):
            raise LockTimeout("Slot is busy, try again") from exc
        raise


def set_lock_timeout(db: Session, timeout_ms: int | None = None) -> None:
    # SQLite bounds waits through the connect-time busy timeout instead.
    if db.get_bind().dialect.name != "postgresql":
        return
    ms = int(timeout_ms if timeout_ms is not None else settings.LOCK_TIMEOUT_MS)
    db.execute(text(f"SET LOCAL lock_timeout = {ms}"))


def lock_slot(db: Session, slot_id: str) -> Slot:
    # populate_existing: never trust a copy loaded before the lock was granted
    slot = db.execute(
        select(Slot).where(Slot.id == slot_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not slot:
        raise SlotNotFound(f"Slot {slot_id} not found")
    return slot


def lock_slots_in_order(db: Session, slot_ids: Iterable[str]) -> dict[str, Slot]:
    return {sid: lock_slot(db, sid) for sid in sorted(set(slot_ids))}


def lock_booking(db: Session, booking_id: str) -> Booking:
    booking = db.execute(
        select(Booking).where(Booking.id == booking_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not booking:
        raise BookingNotFound(f"Booking {booking_id} not found")
    return booking
