"""
Error taxonomy for slot capacity operations.

Services raise these; routers let them propagate and the exception handler in
main.py renders them as {"error_kind": ..., "detail": ..., **extra}.
Only LockTimeout is worth retrying; every other kind is terminal for the request.
"""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

# ---------------------------------------------------------------------------
# HTTP status codes per error category
# ---------------------------------------------------------------------------

STATUS_BAD_REQUEST = 400
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_SERVICE_UNAVAILABLE = 503


class ReservationError(Exception):
    kind = "reservation_error"
    status_code = STATUS_BAD_REQUEST

    def __init__(self, detail: str = "", **extra: Any):
        super().__init__(detail or self.kind)
        self.detail = detail or self.kind
        self.extra = extra

    def as_result(self) -> dict:
        return {"error_kind": self.kind, "detail": self.detail, **self.extra}


class InvalidRequest(ReservationError):
    kind = "invalid_request"


class SlotNotFound(ReservationError):
    kind = "slot_not_found"
    status_code = STATUS_NOT_FOUND


class BookingNotFound(ReservationError):
    kind = "booking_not_found"
    status_code = STATUS_NOT_FOUND


class ShiftNotFound(ReservationError):
    kind = "shift_not_found"
    status_code = STATUS_NOT_FOUND


class ServiceNotFound(ReservationError):
    kind = "service_not_found"
    status_code = STATUS_NOT_FOUND


class HoldNotFound(ReservationError):
    kind = "hold_not_found"
    status_code = STATUS_NOT_FOUND


class ServiceInactive(ReservationError):
    kind = "service_inactive"
    status_code = STATUS_CONFLICT


class SlotUnavailable(ReservationError):
    kind = "slot_unavailable"
    status_code = STATUS_CONFLICT


class InsufficientCapacity(ReservationError):
    kind = "insufficient_capacity"
    status_code = STATUS_CONFLICT

    def __init__(self, remaining: int, requested: int):
        super().__init__(
            f"Only {remaining} available, {requested} requested",
            remaining_capacity=remaining,
            requested=requested,
        )
        self.remaining_capacity = remaining
        self.requested = requested


class ServiceMismatch(ReservationError):
    kind = "service_mismatch"
    status_code = STATUS_CONFLICT

    def __init__(self, expected_service_id: str, actual_service_id: str):
        super().__init__(
            "Slot belongs to a different service; repair the booking explicitly before moving it",
            expected_service_id=expected_service_id,
            actual_service_id=actual_service_id,
        )
        self.expected_service_id = expected_service_id
        self.actual_service_id = actual_service_id


class AlreadyCancelled(ReservationError):
    kind = "already_cancelled"
    status_code = STATUS_CONFLICT


class HoldInvalid(ReservationError):
    kind = "hold_invalid"
    status_code = STATUS_CONFLICT


class LockTimeout(ReservationError):
    kind = "busy"
    status_code = STATUS_SERVICE_UNAVAILABLE


async def reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.as_result())
