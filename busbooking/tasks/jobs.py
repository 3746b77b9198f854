from busbooking.tasks.celery_app import celery
from busbooking.tasks import worker_jobs


@celery.task(name="busbooking.tasks.jobs.expire_stale_checkouts")
def expire_stale_checkouts():
    return worker_jobs.expire_stale_checkouts()


@celery.task(name="busbooking.tasks.jobs.process_email_queue")
def process_email_queue(limit: int = 50):
    return worker_jobs.process_email_queue(limit=limit)
