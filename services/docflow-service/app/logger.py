# app/logger.py
import logging
import sys

from app.config import settings
from app.middleware.correlation import CorrelationIdFilter

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] rid=%(request_id)s %(message)s"

_configured = False


def setup_logging() -> None:
    global _configured
    if _configured:
        return
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(logging.Formatter(LOG_FORMAT))
    # On the handler, so records from any logger carry the ids
    h.addFilter(CorrelationIdFilter())
    root = logging.getLogger()
    root.addHandler(h)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"docflow.{name}")


__all__ = ["setup_logging", "get_logger"]
