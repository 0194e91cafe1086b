"""
Infrastructure package.

Logging configuration shared by every component.
"""

from eigentrader.infra.logging_cfg import (
    LOGGER_NAME,
    AsyncQueueHandler,
    JsonFormatter,
    RedactingFilter,
    ThrottledFilter,
    build_logger,
    redact_secrets,
    set_level,
)

__all__ = [
    "LOGGER_NAME",
    "AsyncQueueHandler",
    "JsonFormatter",
    "RedactingFilter",
    "ThrottledFilter",
    "build_logger",
    "redact_secrets",
    "set_level",
]
