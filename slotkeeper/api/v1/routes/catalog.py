from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from slotkeeper.api.deps import OPERATOR_ROLES, Actor, ensure_tenant, get_owned, require_roles
from slotkeeper.core.errors import ServiceNotFound, ShiftNotFound
from slotkeeper.db.session import get_db
from slotkeeper.models.service import Service
from slotkeeper.models.shift import Shift
from slotkeeper.schemas.catalog import ServiceIn, ServiceOut, ServicePatch, ServiceUpdateOut, ShiftIn, ShiftOut, ShiftPatch
from slotkeeper.schemas.slots import RecalculateOut, SyncOut
from slotkeeper.services import catalog_service
from slotkeeper.services.capacity_sync import SyncResult, recalculate_slot_counters, synchronize_capacity
from slotkeeper.services.reservation_service import call_with_lock_retry

router = APIRouter(tags=["catalog"])


def _service_out(s: Service) -> ServiceOut:
    return ServiceOut(
        id=s.id,
        tenant_id=s.tenant_id,
        name=s.name,
        capacity_per_slot=s.capacity_per_slot,
        duration_minutes=s.duration_minutes,
        is_active=s.is_active,
        archived_at=s.archived_at,
    )


def _shift_out(sh: Shift) -> ShiftOut:
    return ShiftOut(
        id=sh.id,
        tenant_id=sh.tenant_id,
        service_id=sh.service_id,
        days_of_week=sorted(sh.weekdays),
        start_time=sh.start_time,
        end_time=sh.end_time,
        is_active=sh.is_active,
    )


def _sync_out(r: SyncResult) -> SyncOut:
    return SyncOut(updated_count=r.updated_count, clamped_count=r.clamped_count, clamped_slot_ids=r.clamped_slot_ids)


# -------------------------
# Services
# -------------------------
@router.post("/services", response_model=ServiceOut, status_code=201)
def create_service(body: ServiceIn, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(*OPERATOR_ROLES))):
    ensure_tenant(actor, body.tenant_id)
    s = catalog_service.create_service(
        db,
        body.tenant_id,
        body.name,
        body.capacity_per_slot,
        duration_minutes=body.duration_minutes,
        is_active=body.is_active,
        actor_id=actor.id,
    )
    return _service_out(s)


@router.get("/services/{service_id}", response_model=ServiceOut)
def get_service(service_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(*OPERATOR_ROLES))):
    return _service_out(get_owned(db, Service, service_id, actor, ServiceNotFound))


@router.patch("/services/{service_id}", response_model=ServiceUpdateOut)
def patch_service(
    service_id: str,
    body: ServicePatch,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*OPERATOR_ROLES)),
):
    get_owned(db, Service, service_id, actor, ServiceNotFound)
    s, sync = call_with_lock_retry(
        lambda: catalog_service.update_service(db, service_id, body.model_dump(exclude_unset=True), actor_id=actor.id)
    )
    return ServiceUpdateOut(service=_service_out(s), sync=_sync_out(sync) if sync else None)


@router.delete("/services/{service_id}", response_model=ServiceOut)
def archive_service(service_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(*OPERATOR_ROLES))):
    get_owned(db, Service, service_id, actor, ServiceNotFound)
    return _service_out(catalog_service.archive_service(db, service_id, actor_id=actor.id))


@router.post("/services/{service_id}/resync", response_model=SyncOut)
def resync_service(service_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(*OPERATOR_ROLES))):
    get_owned(db, Service, service_id, actor, ServiceNotFound)
    return _sync_out(call_with_lock_retry(lambda: synchronize_capacity(db, service_id, actor_id=actor.id)))


@router.post("/services/{service_id}/recalculate", response_model=RecalculateOut)
def recalculate_service_slots(
    service_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*OPERATOR_ROLES)),
):
    get_owned(db, Service, service_id, actor, ServiceNotFound)
    corrected = call_with_lock_retry(lambda: recalculate_slot_counters(db, service_id=service_id, actor_id=actor.id))
    return RecalculateOut(corrected_count=len(corrected), corrected_slot_ids=corrected)


# -------------------------
# Shifts
# -------------------------
@router.post("/shifts", response_model=ShiftOut, status_code=201)
def create_shift(body: ShiftIn, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(*OPERATOR_ROLES))):
    get_owned(db, Service, body.service_id, actor, ServiceNotFound)
    sh = catalog_service.create_shift(
        db,
        body.service_id,
        body.days_of_week,
        body.start_time,
        body.end_time,
        is_active=body.is_active,
        actor_id=actor.id,
    )
    return _shift_out(sh)


@router.patch("/shifts/{shift_id}", response_model=ShiftOut)
def patch_shift(shift_id: str, body: ShiftPatch, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(*OPERATOR_ROLES))):
    get_owned(db, Shift, shift_id, actor, ShiftNotFound)
    return _shift_out(catalog_service.update_shift(db, shift_id, body.model_dump(exclude_unset=True), actor_id=actor.id))
