from typing import List, Optional

from pydantic import BaseModel, Field


class ConsistencyOut(BaseModel):
    booking_id: str
    consistent: bool
    expected_service_id: Optional[str] = None
    actual_service_id: Optional[str] = None


class ConsistencyScanOut(BaseModel):
    tenant_id: str
    scanned: int = 0
    repaired: int = 0
    mismatches: List[ConsistencyOut] = Field(default_factory=list)
