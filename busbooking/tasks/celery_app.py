from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import worker_process_init
from busbooking.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """rediss:// brokers need ssl_cert_reqs in the URL for Celery."""
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
    "busbooking",
    broker=_redis_url,
    backend=_redis_url,
    include=["busbooking.tasks.jobs"],
)

celery.conf.timezone = "Asia/Ho_Chi_Minh"


# Each worker process reads the migration state once, not on every run
@worker_process_init.connect
def on_worker_process_init(**kwargs):
    from busbooking.core.logging import configure_logging
    from busbooking.tasks import worker_jobs
    configure_logging()
    worker_jobs.load_schema_state()


celery.conf.beat_schedule = {
    "expire-stale-checkouts-every-minute": {
        "task": "busbooking.tasks.jobs.expire_stale_checkouts",
        "schedule": 60.0,
    },
    "process-email-queue-every-2-minutes": {
        "task": "busbooking.tasks.jobs.process_email_queue",
        "schedule": 120.0,
        "kwargs": {"limit": 50},
    },
}
