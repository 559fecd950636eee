"""
Centralized logging configuration.

Provides structured JSON logging for production and human-readable
output for local development.  Call ``setup_logging`` once, early in
the application lifecycle (``medianest.main`` does).
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

# Driver and client libraries that log every heartbeat or request.
_NOISY_LOGGERS: tuple[str, ...] = (
    "pymongo",
    "amqp",
    "kombu",
    "httpx",
    "httpcore",
)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
"""Id of the HTTP request being served; set by ``RequestIDMiddleware``."""


def setup_logging(
    level: str = "INFO",
    *,
    json_format: bool = False,
) -> None:
    """
    Configure the root logger for the application.

    Args:
        level: Logging level name (e.g. ``"INFO"``, ``"DEBUG"``).
        json_format: If ``True``, emit structured JSON lines.
            Recommended for containerised / production environments.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_format:
        fmt = (
            '{"time":"%(asctime)s",'
            '"level":"%(levelname)s",'
            '"logger":"%(name)s",'
            '"request_id":"%(request_id)s",'
            '"message":"%(message)s"}'
        )
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt))
    handler.addFilter(RequestIDFilter())

    root = logging.getLogger()
    root.setLevel(log_level)

    # Avoid duplicate handlers on repeated calls
    root.handlers.clear()
    root.addHandler(handler)

    _silence_noisy_loggers(log_level)


class RequestIDFilter(logging.Filter):
    """Inject the current ``request_id`` into every log record.

    Records logged outside a request (startup, detached publishes)
    get ``"-"`` so the JSON formatter never fails on a missing key.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()  # type: ignore[attr-defined]
        return True


def _silence_noisy_loggers(app_level: int) -> None:
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(app_level, logging.WARNING))
