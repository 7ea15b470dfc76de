"""
Service and shift administration: the parts of the catalog that slot capacity depends on.

Editing a service's capacity_per_slot reconciles its upcoming slots in the same
transaction as the edit. duration_minutes bounds how short a shift may be. Editing a
shift only affects slots materialized afterwards.
"""
import uuid
from datetime import date, datetime, time, timezone
from typing import Iterable, Optional

import structlog
from sqlalchemy.orm import Session

from slotkeeper.core.errors import InvalidRequest, ServiceNotFound, ShiftNotFound
from slotkeeper.db.locking import lock_wait_errors, set_lock_timeout
from slotkeeper.db.session import atomic
from slotkeeper.models.service import Service
from slotkeeper.models.shift import Shift
from slotkeeper.services.audit_service import log_audit
from slotkeeper.services.capacity_sync import SyncResult, log_sync_result, reconcile_capacity

logger = structlog.get_logger("slotkeeper.catalog")

SYNC_FIELDS = ("capacity_per_slot",)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_days(days: Iterable[int]) -> str:
    return ",".join(str(d) for d in sorted(set(days)))


def window_minutes(start_time: time, end_time: time) -> int:
    span = datetime.combine(date.min, end_time) - datetime.combine(date.min, start_time)
    return int(span.total_seconds() // 60)


def validate_shift_window(days: set[int], start_time: time, end_time: time, is_active: bool) -> None:
    if end_time <= start_time:
        raise InvalidRequest("end_time must be after start_time")
    if any(d < 0 or d > 6 for d in days):
        raise InvalidRequest("days_of_week must be within 0..6")
    if is_active and not days:
        raise InvalidRequest("an active shift needs at least one day")


def check_fits_duration(service: Service, start_time: time, end_time: time) -> None:
    if window_minutes(start_time, end_time) < int(service.duration_minutes):
        raise InvalidRequest(f"shift window is shorter than the service duration of {service.duration_minutes} minutes")


def create_service(db: Session, tenant_id: str, name: str, capacity_per_slot: int, duration_minutes: int = 60,
                   is_active: bool = True, actor_id: str | None = None) -> Service:
    if capacity_per_slot < 1:
        raise InvalidRequest("capacity_per_slot must be >= 1")
    if duration_minutes < 1:
        raise InvalidRequest("duration_minutes must be >= 1")
    with atomic(db):
        s = Service(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            name=name,
            capacity_per_slot=capacity_per_slot,
            duration_minutes=duration_minutes,
            is_active=is_active,
        )
        db.add(s)
        log_audit(db, actor_id, "service.create", "service", s.id, {"capacity_per_slot": capacity_per_slot})
    return s


def update_service(db: Session, service_id: str, changes: dict, actor_id: str | None = None) -> tuple[Service, Optional[SyncResult]]:
    """
    Apply changes. When capacity_per_slot changed, the upcoming slots are reconciled in
    the same transaction, so a lock timeout rolls back the edit too and a retry redoes both.
    """
    if changes.get("capacity_per_slot") is not None and int(changes["capacity_per_slot"]) < 1:
        raise InvalidRequest("capacity_per_slot must be >= 1")
    if changes.get("duration_minutes") is not None and int(changes["duration_minutes"]) < 1:
        raise InvalidRequest("duration_minutes must be >= 1")
    sync = None
    with lock_wait_errors(), atomic(db):
        set_lock_timeout(db)
        s = db.get(Service, service_id)
        if not s:
            raise ServiceNotFound(f"Service {service_id} not found")
        changed = {k: v for k, v in changes.items() if v is not None and getattr(s, k) != v}
        if "duration_minutes" in changed:
            too_short = [
                sh.id for sh in db.query(Shift).filter(Shift.service_id == s.id, Shift.is_active.is_(True)).all()
                if window_minutes(sh.start_time, sh.end_time) < int(changed["duration_minutes"])
            ]
            if too_short:
                raise InvalidRequest(f"duration_minutes exceeds the window of shifts {', '.join(too_short)}")
        for k, v in changed.items():
            setattr(s, k, v)
        if changed:
            log_audit(db, actor_id, "service.update", "service", s.id, changed)
        if any(k in changed for k in SYNC_FIELDS):
            sync = reconcile_capacity(db, s, actor_id=actor_id)

    if sync is not None:
        log_sync_result(s.id, int(s.capacity_per_slot), sync)
    return s, sync


def archive_service(db: Session, service_id: str, actor_id: str | None = None) -> Service:
    """Stop materializing and booking a service. Existing slots and bookings stay."""
    with atomic(db):
        s = db.get(Service, service_id)
        if not s:
            raise ServiceNotFound(f"Service {service_id} not found")
        if s.archived_at is None:
            s.archived_at = _utcnow()
            s.is_active = False
            log_audit(db, actor_id, "service.archive", "service", s.id, {})
    return s


def create_shift(db: Session, service_id: str, days_of_week: Iterable[int], start_time: time, end_time: time,
                 is_active: bool = True, actor_id: str | None = None) -> Shift:
    days = set(days_of_week)
    validate_shift_window(days, start_time, end_time, is_active)
    with atomic(db):
        service = db.get(Service, service_id)
        if not service:
            raise ServiceNotFound(f"Service {service_id} not found")
        if is_active:
            check_fits_duration(service, start_time, end_time)
        sh = Shift(
            id=str(uuid.uuid4()),
            tenant_id=service.tenant_id,
            service_id=service_id,
            days_of_week=format_days(days),
            start_time=start_time,
            end_time=end_time,
            is_active=is_active,
        )
        db.add(sh)
        log_audit(db, actor_id, "shift.create", "shift", sh.id, {"service_id": service_id, "days_of_week": sh.days_of_week})
    return sh


def update_shift(db: Session, shift_id: str, changes: dict, actor_id: str | None = None) -> Shift:
    """
    Edit a shift. Already-materialized slots keep their times and capacity. Moving the
    shift to another service leaves existing bookings pointing at the old service until
    the consistency guard repairs them.
    """
    with atomic(db):
        sh = db.get(Shift, shift_id)
        if not sh:
            raise ShiftNotFound(f"Shift {shift_id} not found")
        days = set(changes["days_of_week"]) if changes.get("days_of_week") is not None else sh.weekdays
        start = changes.get("start_time") or sh.start_time
        end = changes.get("end_time") or sh.end_time
        active = changes["is_active"] if changes.get("is_active") is not None else sh.is_active
        validate_shift_window(days, start, end, active)

        new_service_id = changes.get("service_id")
        reassigned = bool(new_service_id) and new_service_id != sh.service_id
        target = db.get(Service, new_service_id if reassigned else sh.service_id)
        if reassigned and (not target or target.tenant_id != sh.tenant_id):
            raise ServiceNotFound(f"Service {new_service_id} not found")
        if active:
            check_fits_duration(target, start, end)
        if reassigned:
            logger.warning("shift_reassigned", shift_id=sh.id, from_service_id=sh.service_id, to_service_id=new_service_id)
            sh.service_id = new_service_id

        sh.days_of_week = format_days(days)
        sh.start_time, sh.end_time, sh.is_active = start, end, active
        sh.updated_at = _utcnow()
        log_audit(db, actor_id, "shift.update", "shift", sh.id, {k: v for k, v in changes.items() if v is not None})
    return sh


def deactivate_shift(db: Session, shift_id: str, actor_id: str | None = None) -> Shift:
    return update_shift(db, shift_id, {"is_active": False}, actor_id=actor_id)
