from slotkeeper.tasks.celery_app import celery
from slotkeeper.tasks import worker_jobs

@celery.task(name="slotkeeper.tasks.jobs.purge_expired_holds")
def purge_expired_holds():
    return worker_jobs.purge_expired_holds()

@celery.task(name="slotkeeper.tasks.jobs.materialize_horizon")
def materialize_horizon(horizon_days: int | None = None):
    return worker_jobs.materialize_horizon(horizon_days=horizon_days)
