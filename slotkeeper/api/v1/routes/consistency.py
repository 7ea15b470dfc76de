from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from slotkeeper.api.deps import OPERATOR_ROLES, Actor, ensure_tenant, get_owned, require_roles
from slotkeeper.core.errors import BookingNotFound
from slotkeeper.db.session import get_db
from slotkeeper.models.booking import Booking
from slotkeeper.schemas.consistency import ConsistencyOut, ConsistencyScanOut
from slotkeeper.services.consistency_service import (
    ConsistencyResult,
    ScanResult,
    check_booking,
    repair_booking,
    scan_tenant,
)
from slotkeeper.services.reservation_service import call_with_lock_retry

router = APIRouter(tags=["consistency"])


def _result_out(r: ConsistencyResult) -> ConsistencyOut:
    return ConsistencyOut(
        booking_id=r.booking_id,
        consistent=r.consistent,
        expected_service_id=r.expected_service_id,
        actual_service_id=r.actual_service_id,
    )


def _scan_out(r: ScanResult) -> ConsistencyScanOut:
    return ConsistencyScanOut(
        tenant_id=r.tenant_id,
        scanned=r.scanned,
        repaired=r.repaired,
        mismatches=[_result_out(m) for m in r.mismatches],
    )


@router.get("/consistency/bookings/{booking_id}", response_model=ConsistencyOut)
def check_booking_consistency(booking_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(*OPERATOR_ROLES))):
    get_owned(db, Booking, booking_id, actor, BookingNotFound)
    return _result_out(check_booking(db, booking_id))


@router.post("/consistency/bookings/{booking_id}/repair", response_model=ConsistencyOut)
def repair_booking_consistency(booking_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(*OPERATOR_ROLES))):
    get_owned(db, Booking, booking_id, actor, BookingNotFound)
    return _result_out(call_with_lock_retry(lambda: repair_booking(db, booking_id, actor_id=actor.id)))


@router.get("/consistency/tenants/{tenant_id}", response_model=ConsistencyScanOut)
def scan_tenant_consistency(tenant_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(*OPERATOR_ROLES))):
    ensure_tenant(actor, tenant_id)
    return _scan_out(scan_tenant(db, tenant_id))


@router.post("/consistency/tenants/{tenant_id}", response_model=ConsistencyScanOut)
def repair_tenant_consistency(tenant_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_roles(*OPERATOR_ROLES))):
    ensure_tenant(actor, tenant_id)
    return _scan_out(scan_tenant(db, tenant_id, repair=True, actor_id=actor.id))
