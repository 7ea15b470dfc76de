"""Job bodies, kept free of Celery so they can be called directly (tests, start_api)."""
import structlog
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from slotkeeper.db.session import SessionLocal
from slotkeeper.services import hold_service, slot_materializer

logger = structlog.get_logger("slotkeeper.worker")


def purge_expired_holds(session_factory=SessionLocal) -> dict:
    db: Session = session_factory()
    try:
        try:
            purged = hold_service.purge_expired_holds(db)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        return {"purged": purged}
    finally:
        db.close()


def materialize_horizon(horizon_days: int | None = None, session_factory=SessionLocal) -> dict:
    db: Session = session_factory()
    try:
        try:
            result = slot_materializer.materialize_horizon(db, horizon_days=horizon_days)
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        if result["errors"]:
            logger.warning("materialize_horizon_partial", errors=result["errors"])
        logger.info("materialize_horizon_done", shifts=result["shifts"], created=result["created"])
        return result
    finally:
        db.close()
