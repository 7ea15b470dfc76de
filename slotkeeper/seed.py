"""Local demo data: one tenant, one service and a weekday shift, materialized for the horizon."""
from datetime import time

import structlog
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import Session

from slotkeeper.core.config import settings
from slotkeeper.db.session import SessionLocal
from slotkeeper.models.service import Service
from slotkeeper.services import catalog_service, slot_materializer

logger = structlog.get_logger("slotkeeper.seed")

DEMO_TENANT_ID = "demo-tenant"


def run(db: Session | None = None):
    if settings.ENV != "local":
        return
    own = db is None
    db = db or SessionLocal()
    try:
        try:
            existing = db.query(Service.id).filter(Service.tenant_id == DEMO_TENANT_ID).first()
        except (ProgrammingError, OperationalError):
            # If migrations haven't been applied yet, seeding must not crash the API.
            db.rollback()
            logger.warning("seed_skipped", reason="missing_tables")
            return
        db.rollback()
        if existing:
            return

        service = catalog_service.create_service(db, DEMO_TENANT_ID, "Guided tour", capacity_per_slot=10, duration_minutes=90)
        catalog_service.create_shift(db, service.id, [0, 1, 2, 3, 4], time(9, 0), time(10, 30))
        catalog_service.create_shift(db, service.id, [5], time(11, 0), time(12, 30))
        result = slot_materializer.materialize_horizon(db)
        logger.info("seed_done", tenant_id=DEMO_TENANT_ID, service_id=service.id, slots=result["created"])
    finally:
        if own:
            db.close()
