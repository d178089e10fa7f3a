"""
Structured logging setup.

Every module gets its logger with structlog.get_logger(__name__)
and logs snake_case event names with key/value context. This
module configures the processor chain once at process start.
"""

import logging

import structlog

from audit_trail.config import get_settings


def add_service_info(logger, method_name, event_dict):
    """Stamp every record with the service name and environment."""
    settings = get_settings()
    event_dict.setdefault("service", "audit-trail")
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    settings = get_settings()
    level = level or settings.LOG_LEVEL
    json_logs = settings.LOG_JSON if json_logs is None else json_logs

    # Convert string log level to int for structlog
    level_int = getattr(logging, level.upper(), logging.INFO)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            add_service_info,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_int),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
