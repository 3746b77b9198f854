"""Block until the Postgres behind DATABASE_URL accepts connections (container start-up)."""
import logging
import os
import time
from urllib.parse import urlparse

import psycopg2

logger = logging.getLogger("wait_for_db")


def wait(database_url: str, timeout_s: int) -> None:
    # SQLAlchemy URL may carry a driver suffix
    url = database_url.replace("postgresql+psycopg2://", "postgresql://").replace("postgres://", "postgresql://")
    p = urlparse(url)
    params = dict(
        host=p.hostname or "db",
        port=p.port or 5432,
        user=p.username or "busbooking",
        password=p.password or "busbooking",
        dbname=(p.path or "/busbooking").lstrip("/") or "busbooking",
    )
    logger.info("waiting for Postgres at %s:%s db=%s (timeout=%ss)", params["host"], params["port"], params["dbname"], timeout_s)
    deadline = time.time() + timeout_s
    while True:
        try:
            psycopg2.connect(connect_timeout=5, **params).close()
            logger.info("Postgres is ready")
            return
        except psycopg2.OperationalError as e:
            if time.time() > deadline:
                logger.error("timed out waiting for Postgres: %s", e)
                raise
            time.sleep(1)


DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise SystemExit("DATABASE_URL is not set")

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
wait(DATABASE_URL, int(os.getenv("DB_WAIT_TIMEOUT", "60")))
