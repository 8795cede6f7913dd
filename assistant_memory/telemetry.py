"""
Structured logging setup for the memory subsystem.
"""

import uuid

import structlog


structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def get_logger(name: str):
    """Return a structlog logger bound to ``name``."""
    return structlog.get_logger(name)


def new_request_id() -> str:
    """Generate a new unique request ID for correlating log lines."""
    return uuid.uuid4().hex[:12]
