from datetime import datetime, time
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from slotkeeper.schemas.slots import SyncOut


class ServiceIn(BaseModel):
    tenant_id: str
    name: str = ""
    capacity_per_slot: int = Field(default=1, ge=1)
    duration_minutes: int = Field(default=60, ge=1)
    is_active: bool = True


class ServicePatch(BaseModel):
    name: Optional[str] = None
    capacity_per_slot: Optional[int] = Field(default=None, ge=1)
    duration_minutes: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class ServiceOut(BaseModel):
    id: str
    tenant_id: str
    name: str
    capacity_per_slot: int
    duration_minutes: int
    is_active: bool
    archived_at: Optional[datetime] = None


class ShiftIn(BaseModel):
    """Recurring weekly window. days_of_week: 0=Mon .. 6=Sun."""
    service_id: str
    days_of_week: List[int] = Field(default_factory=list)
    start_time: time
    end_time: time
    is_active: bool = True

    @field_validator("days_of_week")
    @classmethod
    def check_days(cls, v: List[int]) -> List[int]:
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("days_of_week must be within 0..6")
        return sorted(set(v))

    @model_validator(mode="after")
    def check_window(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if self.is_active and not self.days_of_week:
            raise ValueError("an active shift needs at least one day")
        return self


class ShiftPatch(BaseModel):
    service_id: Optional[str] = None
    days_of_week: Optional[List[int]] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_active: Optional[bool] = None


class ShiftOut(BaseModel):
    id: str
    tenant_id: str
    service_id: str
    days_of_week: List[int]
    start_time: time
    end_time: time
    is_active: bool


class ServiceUpdateOut(BaseModel):
    service: ServiceOut
    sync: Optional[SyncOut] = None  # present when capacity_per_slot changed
