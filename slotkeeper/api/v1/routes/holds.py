from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from slotkeeper.api.deps import Actor, get_current_actor, get_owned
from slotkeeper.core.errors import SlotNotFound
from slotkeeper.db.session import get_db
from slotkeeper.models.slot import Slot
from slotkeeper.schemas.booking import HoldIn, HoldOut
from slotkeeper.services.hold_service import acquire_hold, release_hold
from slotkeeper.services.reservation_service import call_with_lock_retry

router = APIRouter(tags=["holds"])


@router.post("/holds", response_model=HoldOut, status_code=201)
def create_hold(body: HoldIn, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    get_owned(db, Slot, body.slot_id, actor, SlotNotFound)
    hold = call_with_lock_retry(lambda: acquire_hold(db, body.slot_id, body.session_id, body.units))
    return HoldOut(hold_id=hold.id, slot_id=hold.slot_id, reserved_capacity=hold.reserved_capacity, expires_at=hold.expires_at)


@router.delete("/holds/{hold_id}", status_code=204)
def delete_hold(hold_id: str, session_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    release_hold(db, hold_id, session_id)
