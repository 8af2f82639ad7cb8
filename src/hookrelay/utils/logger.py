"""
Module: logger.py
Description: structlog setup shared by the API, workers and scripts.

Every entry is a single JSON line on stdout so CloudWatch Logs can
index fields such as delivery_id and webhook_id directly.

Key Components:
- configure_logging(): install processors and the minimum level
- get_logger(): module-level logger accessor

Dependencies: structlog, logging, datetime
"""

import logging
from datetime import datetime, timezone

import structlog


def _stamp(logger, method_name, event_dict):
    """Attach a UTC ``timestamp`` and the upper-cased ``level`` to each entry."""
    now = datetime.now(timezone.utc)
    event_dict["timestamp"] = now.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    event_dict["level"] = method_name.upper()
    return event_dict


def configure_logging(level: str = "INFO") -> None:
    """
    (Re)install the JSON logging pipeline.

    Entries below ``level`` are dropped by the bound logger before any
    processor runs. Calling again replaces the previous configuration.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
    """
    min_level = logging.getLevelName(level.upper())
    structlog.configure(
        processors=[
            _stamp,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.WriteLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        # Loggers are created at import, before the engine knows the level
        cache_logger_on_first_use=False,
    )


configure_logging()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Return the logger for ``name`` (normally ``__name__``).

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Delivery succeeded", delivery_id="dlv_123", status_code=200)
    """
    return structlog.get_logger(name)
