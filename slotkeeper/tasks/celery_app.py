from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging, worker_ready
from slotkeeper.core.config import settings
from slotkeeper.core.logging import setup_logging


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "slotkeeper",
    broker=_redis_url,
    backend=_redis_url,
    include=["slotkeeper.tasks.jobs"],
)

celery.conf.timezone = settings.CELERY_TIMEZONE


@celery_setup_logging.connect
def on_setup_logging(**kwargs):
    # Replaces Celery's own logging config so worker output matches the API's.
    setup_logging()


# Materialize once at worker start so a fresh deployment has bookable slots immediately
@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    from slotkeeper.tasks.jobs import materialize_horizon
    materialize_horizon.delay()

celery.conf.beat_schedule = {
    "purge-expired-holds-every-minute": {
        "task": "slotkeeper.tasks.jobs.purge_expired_holds",
        "schedule": 60.0,
    },
    "materialize-horizon-every-6-hours": {
        "task": "slotkeeper.tasks.jobs.materialize_horizon",
        "schedule": 21600.0,
    },
}
