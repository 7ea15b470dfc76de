from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ReservationIn(BaseModel):
    slot_id: str
    units: int = 1
    service_id: Optional[str] = None  # if given, must match the slot's service
    status: Optional[str] = None      # confirmed|pending, defaults to DEFAULT_BOOKING_STATUS
    customer_name: str = ""
    customer_phone: str = ""
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    hold_id: Optional[str] = None
    session_id: Optional[str] = None


class ReservationOut(BaseModel):
    booking_id: str
    status: str
    slot_id: str
    visitor_count: int


class MoveIn(BaseModel):
    new_slot_id: str
    units: Optional[int] = None  # defaults to the booking's visitor_count
    reason: str = ""


class BookingStatusIn(BaseModel):
    status: str


class BookingOut(BaseModel):
    id: str
    tenant_id: str
    service_id: str
    slot_id: str
    visitor_count: int
    status: str
    payment_status: str
    customer_name: str = ""
    created_at: datetime
    cancelled_at: Optional[datetime] = None


class HoldIn(BaseModel):
    slot_id: str
    session_id: str
    units: int = 1


class HoldOut(BaseModel):
    hold_id: str
    slot_id: str
    reserved_capacity: int
    expires_at: datetime
