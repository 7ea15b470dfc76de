from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from slotkeeper.api.deps import OPERATOR_ROLES, Actor, get_current_actor, get_owned, require_roles
from slotkeeper.core.errors import ShiftNotFound, SlotNotFound
from slotkeeper.db.session import get_db
from slotkeeper.models.shift import Shift
from slotkeeper.models.slot import Slot
from slotkeeper.schemas.slots import MaterializeIn, MaterializeOut, SlotAvailabilityIn, SlotOut
from slotkeeper.services.reservation_service import call_with_lock_retry, set_slot_availability
from slotkeeper.services.slot_materializer import materialize_slots

router = APIRouter(tags=["slots"])


def _slot_out(s: Slot) -> SlotOut:
    return SlotOut(
        id=s.id,
        shift_id=s.shift_id,
        service_id=s.service_id,
        slot_date=s.slot_date,
        start_time=s.start_time,
        end_time=s.end_time,
        original_capacity=s.original_capacity,
        available_capacity=s.available_capacity,
        booked_count=s.booked_count,
        is_available=s.is_available,
        is_overbooked=s.is_overbooked,
    )


@router.get("/slots", response_model=list[SlotOut])
def list_slots(
    service_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    only_available: bool = False,
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    q = db.query(Slot).filter(Slot.tenant_id == actor.tenant_id)
    if service_id:
        q = q.filter(Slot.service_id == service_id)
    if date_from:
        q = q.filter(Slot.slot_date >= date_from)
    if date_to:
        q = q.filter(Slot.slot_date <= date_to)
    if only_available:
        q = q.filter(Slot.is_available.is_(True), Slot.available_capacity > 0)
    rows = q.order_by(Slot.slot_date, Slot.start_time).limit(limit).all()
    return [_slot_out(s) for s in rows]


@router.get("/slots/{slot_id}", response_model=SlotOut)
def get_slot(slot_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return _slot_out(get_owned(db, Slot, slot_id, actor, SlotNotFound))


@router.patch("/slots/{slot_id}/availability", response_model=SlotOut)
def patch_slot_availability(
    slot_id: str,
    body: SlotAvailabilityIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*OPERATOR_ROLES)),
):
    get_owned(db, Slot, slot_id, actor, SlotNotFound)
    slot = call_with_lock_retry(
        lambda: set_slot_availability(db, slot_id, body.is_available, actor_id=actor.id, reason=body.reason)
    )
    return _slot_out(slot)


@router.post("/shifts/{shift_id}/materialize", response_model=MaterializeOut)
def materialize_shift(
    shift_id: str,
    body: MaterializeIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*OPERATOR_ROLES)),
):
    get_owned(db, Shift, shift_id, actor, ShiftNotFound)
    return MaterializeOut(created_count=materialize_slots(db, shift_id, body.start_date, body.end_date))
