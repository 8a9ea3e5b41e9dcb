from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import worker_ready
from app.core.config import settings


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
    "slot_escrow",
    broker=_redis_url,
    backend=_redis_url,
    include=["app.tasks.jobs"],
)

celery.conf.timezone = settings.SLOT_TIMEZONE
celery.conf.task_acks_late = True

# Catch up on holds that lapsed while no worker was running
@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    from app.tasks.jobs import sweep_escrow_holds
    sweep_escrow_holds.delay()

celery.conf.beat_schedule = {
    "sweep-escrow-holds": {
        "task": "app.tasks.jobs.sweep_escrow_holds",
        "schedule": settings.SWEEP_INTERVAL_SECONDS,
    },
    "process-refund-queue": {
        "task": "app.tasks.jobs.process_refund_queue",
        "schedule": settings.REFUND_QUEUE_INTERVAL_SECONDS,
        "kwargs": {"limit": 50},
    },
}
