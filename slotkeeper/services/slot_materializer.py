"""
Slot materialization: expand a shift's weekly pattern into dated slot rows.

Day-of-week convention matches Shift.days_of_week: 0 = Monday .. 6 = Sunday
(Python date.weekday()). One slot per (shift, date); re-running over an
overlapping range only fills the gaps.
"""
from datetime import date, timedelta
import uuid

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slotkeeper.core.config import settings
from slotkeeper.core.errors import InvalidRequest, ServiceInactive, ServiceNotFound, ShiftNotFound
from slotkeeper.core.timeutil import slot_clock
from slotkeeper.db.session import atomic
from slotkeeper.models.service import Service
from slotkeeper.models.shift import Shift
from slotkeeper.models.slot import Slot

logger = structlog.get_logger("slotkeeper.materializer")


def _check_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise InvalidRequest("end_date must not be before start_date")
    days = (end_date - start_date).days + 1
    if days > settings.MAX_MATERIALIZE_DAYS:
        raise InvalidRequest(f"Range of {days} days exceeds the {settings.MAX_MATERIALIZE_DAYS} day limit")


def _build_slots(db: Session, shift: Shift, service: Service, start_date: date, end_date: date) -> list[Slot]:
    existing = {
        r[0] for r in db.query(Slot.slot_date)
        .filter(Slot.shift_id == shift.id, Slot.slot_date >= start_date, Slot.slot_date <= end_date)
        .all()
    }
    days = shift.weekdays
    out = []
    d = start_date
    while d <= end_date:
        if d.weekday() in days and d not in existing:
            out.append(Slot(
                id=str(uuid.uuid4()),
                tenant_id=shift.tenant_id,
                shift_id=shift.id,
                service_id=service.id,
                slot_date=d,
                start_time=shift.start_time,
                end_time=shift.end_time,
                original_capacity=service.capacity_per_slot,
                available_capacity=service.capacity_per_slot,
                booked_count=0,
                is_overbooked=False,
                is_available=True,
            ))
        d += timedelta(days=1)
    return out


def _materialize_once(db: Session, shift_id: str, start_date: date, end_date: date) -> int:
    with atomic(db):
        shift = db.get(Shift, shift_id)
        if not shift:
            raise ShiftNotFound(f"Shift {shift_id} not found")
        if not shift.is_active:
            raise InvalidRequest("Shift is inactive")
        service = db.get(Service, shift.service_id)
        if not service:
            raise ServiceNotFound(f"Service {shift.service_id} not found")
        if not service.bookable:
            raise ServiceInactive("Service is inactive or archived")
        slots = _build_slots(db, shift, service, start_date, end_date)
        db.add_all(slots)
        db.flush()
    return len(slots)


def materialize_slots(db: Session, shift_id: str, start_date: date, end_date: date) -> int:
    """Create the missing slots of a shift within [start_date, end_date]. Returns the number created."""
    _check_range(start_date, end_date)
    try:
        created = _materialize_once(db, shift_id, start_date, end_date)
    except IntegrityError:
        # A concurrent run inserted some of the same dates first; the retry skips them.
        logger.info("materialize_conflict_retry", shift_id=shift_id)
        created = _materialize_once(db, shift_id, start_date, end_date)
    logger.info("slots_materialized", shift_id=shift_id, start=str(start_date), end=str(end_date), created=created)
    return created


def materialize_horizon(db: Session, today: date | None = None, horizon_days: int | None = None) -> dict:
    """Materialize every active shift of a bookable service for the next horizon_days."""
    today = today or slot_clock().date()
    horizon = min(horizon_days or settings.MATERIALIZE_HORIZON_DAYS, settings.MAX_MATERIALIZE_DAYS)
    end = today + timedelta(days=horizon - 1)
    shift_ids = [
        r[0] for r in db.query(Shift.id)
        .join(Service, Service.id == Shift.service_id)
        .filter(Shift.is_active == True, Service.is_active == True, Service.archived_at.is_(None))  # noqa: E712
        .order_by(Shift.id)
        .all()
    ]
    db.rollback()
    total = 0
    errors: list[str] = []
    for sid in shift_ids:
        try:
            total += materialize_slots(db, sid, today, end)
        except (ShiftNotFound, ServiceNotFound, ServiceInactive, InvalidRequest) as e:
            # Shift or service changed between listing and materializing; the next run picks it up.
            errors.append(f"{sid}: {e.detail}")
    return {"shifts": len(shift_ids), "created": total, "errors": errors}
