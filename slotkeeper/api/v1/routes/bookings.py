from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from slotkeeper.api.deps import OPERATOR_ROLES, Actor, get_current_actor, get_owned, require_roles
from slotkeeper.core.errors import BookingNotFound, SlotNotFound
from slotkeeper.db.session import get_db
from slotkeeper.models.booking import Booking
from slotkeeper.models.slot import Slot
from slotkeeper.schemas.booking import BookingOut, BookingStatusIn, MoveIn, ReservationIn, ReservationOut
from slotkeeper.services.reservation_service import (
    ReservationPayload,
    call_with_lock_retry,
    move,
    release,
    reserve,
    update_booking_status,
)

router = APIRouter(tags=["bookings"])


def _booking_out(b: Booking) -> BookingOut:
    return BookingOut(
        id=b.id,
        tenant_id=b.tenant_id,
        service_id=b.service_id,
        slot_id=b.slot_id,
        visitor_count=b.visitor_count,
        status=b.status,
        payment_status=b.payment_status,
        customer_name=b.customer_name or "",
        created_at=b.created_at,
        cancelled_at=b.cancelled_at,
    )


@router.post("/bookings", response_model=ReservationOut, status_code=201)
def create_booking(body: ReservationIn, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    get_owned(db, Slot, body.slot_id, actor, SlotNotFound)
    payload = ReservationPayload(
        tenant_id=None if actor.is_admin else actor.tenant_id,
        service_id=body.service_id,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        customer_email=body.customer_email,
        notes=body.notes,
    )
    booking = call_with_lock_retry(lambda: reserve(
        db,
        body.slot_id,
        body.units,
        payload=payload,
        status=body.status,
        hold_id=body.hold_id,
        session_id=body.session_id,
        actor_id=actor.id,
    ))
    return ReservationOut(booking_id=booking.id, status=booking.status, slot_id=booking.slot_id, visitor_count=booking.visitor_count)


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return _booking_out(get_owned(db, Booking, booking_id, actor, BookingNotFound))


@router.post("/bookings/{booking_id}/release", response_model=BookingOut)
def release_booking(booking_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    get_owned(db, Booking, booking_id, actor, BookingNotFound)
    booking = call_with_lock_retry(lambda: release(db, booking_id, actor_id=actor.id))
    return _booking_out(booking)


@router.post("/bookings/{booking_id}/move", response_model=BookingOut)
def move_booking(booking_id: str, body: MoveIn, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    get_owned(db, Booking, booking_id, actor, BookingNotFound)
    booking = call_with_lock_retry(
        lambda: move(db, booking_id, body.new_slot_id, units=body.units, actor_id=actor.id, reason=body.reason)
    )
    return _booking_out(booking)


@router.patch("/bookings/{booking_id}/status", response_model=BookingOut)
def set_booking_status(
    booking_id: str,
    body: BookingStatusIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(*OPERATOR_ROLES)),
):
    get_owned(db, Booking, booking_id, actor, BookingNotFound)
    booking = call_with_lock_retry(lambda: update_booking_status(db, booking_id, body.status, actor_id=actor.id))
    return _booking_out(booking)
