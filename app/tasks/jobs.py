from datetime import datetime, timedelta

from app.tasks.celery_app import celery
from app.tasks import worker_jobs

@celery.task(name="app.tasks.jobs.sweep_escrow_holds")
def sweep_escrow_holds():
    return worker_jobs.sweep_escrow_holds()

@celery.task(name="app.tasks.jobs.expire_booking")
def expire_booking(booking_id: str):
    return worker_jobs.expire_booking(booking_id)


@celery.task(name="app.tasks.jobs.process_refund_queue")
def process_refund_queue(limit: int = 50):
    return worker_jobs.process_refund_queue(limit=limit)


def schedule_expiry(booking_id: str, expiry_time: datetime) -> None:
    """Queue the deadline for one hold, just past its expiry so `expire` accepts it."""
    expire_booking.apply_async(args=[booking_id], eta=expiry_time + timedelta(seconds=1))
