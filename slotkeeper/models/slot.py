from sqlalchemy import String, Date, Integer, DateTime, UniqueConstraint, Boolean, Time, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import date, datetime, time, timezone
from slotkeeper.db.session import Base

class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (
        UniqueConstraint("shift_id", "slot_date", name="uq_slot_shift_date"),
        CheckConstraint("available_capacity >= 0", name="ck_slot_available_non_negative"),
        CheckConstraint("booked_count >= 0", name="ck_slot_booked_non_negative"),
        CheckConstraint("original_capacity > 0", name="ck_slot_original_positive"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), index=True)
    shift_id: Mapped[str] = mapped_column(String(36), index=True)
    service_id: Mapped[str] = mapped_column(String(36), index=True)  # as of materialization

    slot_date: Mapped[date] = mapped_column(Date, index=True)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)

    # Capacity counters. Written only by the reservation engine and the capacity synchronizer.
    original_capacity: Mapped[int] = mapped_column(Integer)
    available_capacity: Mapped[int] = mapped_column(Integer)
    booked_count: Mapped[int] = mapped_column(Integer, default=0)
    is_overbooked: Mapped[bool] = mapped_column(Boolean, default=False)

    is_available: Mapped[bool] = mapped_column(Boolean, default=True)  # manual blackout override

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
