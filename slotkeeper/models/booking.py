from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from slotkeeper.db.session import Base

PENDING = "pending"
CONFIRMED = "confirmed"
CHECKED_IN = "checked_in"
COMPLETED = "completed"
CANCELLED = "cancelled"

BOOKING_STATUSES = (PENDING, CONFIRMED, CHECKED_IN, COMPLETED, CANCELLED)
# Bookings that can still be moved, released or repaired
ACTIVE_STATUSES = (PENDING, CONFIRMED, CHECKED_IN)
# Statuses whose visitor_count stays in the slot's booked_count; completed visits keep their units
COUNTED_STATUSES = ACTIVE_STATUSES + (COMPLETED,)

class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), index=True)
    service_id: Mapped[str] = mapped_column(String(36), index=True)
    slot_id: Mapped[str] = mapped_column(String(36), index=True)

    visitor_count: Mapped[int] = mapped_column(Integer, default=1)

    status: Mapped[str] = mapped_column(String(20), default=CONFIRMED, index=True)  # pending, confirmed, checked_in, completed, cancelled
    payment_status: Mapped[str] = mapped_column(String(20), default="unpaid")       # unpaid, paid, refunded

    # Opaque to the capacity engine; supplied by booking orchestration
    customer_name: Mapped[str] = mapped_column(String(200), default="")
    customer_phone: Mapped[str] = mapped_column(String(40), default="")
    customer_email: Mapped[str] = mapped_column(String(320), nullable=True)
    notes: Mapped[str] = mapped_column(String(1000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    cancelled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
