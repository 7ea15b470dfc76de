"""
Capacity synchronizer: bring existing future slots in line with a service's
current capacity_per_slot.

Bookings are never cancelled here. When a slot already holds more units than the
new capacity, available_capacity is clamped to 0, the slot is flagged
is_overbooked and reported in clamped_slot_ids for an operator to resolve.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Iterable

import structlog
from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from slotkeeper.core.errors import InvalidRequest, ServiceNotFound
from slotkeeper.core.timeutil import slot_clock
from slotkeeper.db.locking import lock_slots_in_order, lock_wait_errors, set_lock_timeout
from slotkeeper.db.session import atomic
from slotkeeper.models.booking import COUNTED_STATUSES, Booking
from slotkeeper.models.service import Service
from slotkeeper.models.shift import Shift
from slotkeeper.models.slot import Slot
from slotkeeper.services.audit_service import log_audit

logger = structlog.get_logger("slotkeeper.capacity_sync")


@dataclass
class SyncResult:
    updated_count: int = 0
    clamped_count: int = 0
    clamped_slot_ids: list[str] = field(default_factory=list)


def _upcoming_slot_ids(db: Session, service_id: str, now: datetime) -> list[str]:
    # Slot dates and times are wall-clock in SLOT_TIMEZONE
    local = slot_clock(now)
    today: date = local.date()
    current: time = local.time().replace(tzinfo=None)
    rows = (
        db.query(Slot.id)
        .join(Shift, Shift.id == Slot.shift_id)
        .filter(
            Shift.service_id == service_id,
            or_(
                Slot.slot_date > today,
                and_(Slot.slot_date == today, Slot.start_time > current),
            ),
        )
        .order_by(Slot.id)
        .all()
    )
    return [r[0] for r in rows]


def reconcile_capacity(
    db: Session,
    service: Service,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> SyncResult:
    """
    Apply service.capacity_per_slot to its slots that have not started yet, inside the
    caller's open transaction. Takes the slot locks; the caller commits or rolls back.
    """
    now = now or datetime.now(timezone.utc)
    new_capacity = int(service.capacity_per_slot)
    if new_capacity < 1:
        raise InvalidRequest("capacity_per_slot must be >= 1")

    result = SyncResult()
    slots = lock_slots_in_order(db, _upcoming_slot_ids(db, service.id, now))
    for slot in slots.values():
        booked = int(slot.booked_count)
        available = max(new_capacity - booked, 0)
        overbooked = booked > new_capacity
        if overbooked:
            result.clamped_count += 1
            result.clamped_slot_ids.append(slot.id)
        if (slot.original_capacity, slot.available_capacity, slot.is_overbooked) == (new_capacity, available, overbooked):
            continue
        slot.original_capacity = new_capacity
        slot.available_capacity = available
        slot.is_overbooked = overbooked
        slot.updated_at = now
        result.updated_count += 1

    log_audit(db, actor_id, "service.capacity_sync", "service", service.id, {
        "capacity_per_slot": new_capacity,
        "updated": result.updated_count,
        "clamped": result.clamped_slot_ids,
    })
    return result


def log_sync_result(service_id: str, capacity: int, result: SyncResult) -> None:
    if result.clamped_count:
        logger.warning(
            "slots_over_subscribed_after_sync",
            service_id=service_id,
            capacity=capacity,
            clamped_slot_ids=result.clamped_slot_ids,
        )
    logger.info("capacity_synchronized", service_id=service_id, updated=result.updated_count, clamped=result.clamped_count)


def synchronize_capacity(
    db: Session,
    service_id: str,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> SyncResult:
    """Apply the service's capacity_per_slot to all of its slots that have not started yet."""
    with lock_wait_errors(), atomic(db):
        set_lock_timeout(db)
        service = db.get(Service, service_id)
        if not service:
            raise ServiceNotFound(f"Service {service_id} not found")
        result = reconcile_capacity(db, service, actor_id=actor_id, now=now)
    log_sync_result(service_id, int(service.capacity_per_slot), result)
    return result


def recalculate_slot_counters(
    db: Session,
    slot_ids: Iterable[str] | None = None,
    service_id: str | None = None,
    actor_id: str | None = None,
) -> list[str]:
    """
    Recompute booked_count from the counted (active or completed) bookings of each slot and derive
    available_capacity from it. Repair tool for data written outside this service.
    Returns the ids of slots whose counters changed.
    """
    if slot_ids is None and service_id is None:
        raise InvalidRequest("slot_ids or service_id is required")
    corrected: list[str] = []
    with lock_wait_errors(), atomic(db):
        set_lock_timeout(db)
        ids = set(slot_ids or [])
        if service_id is not None:
            ids.update(r[0] for r in db.query(Slot.id).filter(Slot.service_id == service_id).all())
        slots = lock_slots_in_order(db, ids)
        if not slots:
            return corrected
        totals = dict(
            db.query(Booking.slot_id, func.coalesce(func.sum(Booking.visitor_count), 0))
            .filter(Booking.slot_id.in_(list(slots)), Booking.status.in_(COUNTED_STATUSES))
            .group_by(Booking.slot_id)
            .all()
        )
        for sid, slot in slots.items():
            booked = int(totals.get(sid, 0))
            available = max(int(slot.original_capacity) - booked, 0)
            overbooked = booked > int(slot.original_capacity)
            if (slot.booked_count, slot.available_capacity, slot.is_overbooked) == (booked, available, overbooked):
                continue
            logger.warning(
                "slot_counters_corrected",
                slot_id=sid,
                booked_before=slot.booked_count,
                booked_after=booked,
                available_before=slot.available_capacity,
                available_after=available,
            )
            slot.booked_count = booked
            slot.available_capacity = available
            slot.is_overbooked = overbooked
            corrected.append(sid)
        if corrected:
            log_audit(db, actor_id, "slot.recalculate", "slot", corrected[0], {"slots": corrected})
    return corrected
