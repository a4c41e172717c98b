"""
Shared helpers: logging setup and UTC clock.
"""
import logging
from datetime import datetime, timezone

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging once, at application startup.

    Logs stream to stderr so uvicorn picks them up alongside its own access log.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    logging.getLogger(__name__).info("Logging initialized with level %s", level)


def get_logger(name: str) -> logging.Logger:
    """
    Return a module logger.

    Usage:
        from app.utils import get_logger
        log = get_logger(__name__)
    """
    return logging.getLogger(name)


def utcnow() -> datetime:
    """Current time as naive UTC, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime read back from any backend to naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
