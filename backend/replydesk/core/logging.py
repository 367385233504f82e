import logging

from replydesk.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format=LOG_FORMAT,
)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
