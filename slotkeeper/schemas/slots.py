from datetime import date, time
from typing import List

from pydantic import BaseModel, Field


class SlotOut(BaseModel):
    id: str
    shift_id: str
    service_id: str
    slot_date: date
    start_time: time
    end_time: time
    original_capacity: int
    available_capacity: int
    booked_count: int
    is_available: bool
    is_overbooked: bool = False


class MaterializeIn(BaseModel):
    start_date: date
    end_date: date


class MaterializeOut(BaseModel):
    created_count: int = 0


class SlotAvailabilityIn(BaseModel):
    is_available: bool
    reason: str = ""


class SyncOut(BaseModel):
    updated_count: int = 0
    clamped_count: int = 0
    clamped_slot_ids: List[str] = Field(default_factory=list)


class RecalculateOut(BaseModel):
    corrected_count: int = 0
    corrected_slot_ids: List[str] = Field(default_factory=list)
