import logging

from busbooking.core.config import settings

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=_FORMAT)
    # Callback signature failures go to their own logger so they can be routed for review
    logging.getLogger("busbooking.security").setLevel(logging.WARNING)
