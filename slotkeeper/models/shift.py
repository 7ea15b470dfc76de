from sqlalchemy import String, DateTime, Boolean, Time
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, time, timezone
from slotkeeper.db.session import Base

class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), index=True)
    service_id: Mapped[str] = mapped_column(String(36), index=True)
    # comma-separated days: 0=Mon..6=Sun
    days_of_week: Mapped[str] = mapped_column(String(30), default="0,1,2,3,4")
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def weekdays(self) -> set[int]:
        return {int(x) for x in (self.days_of_week or "").split(",") if x.strip().isdigit()}
