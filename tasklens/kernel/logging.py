"""Structured logging setup shared by the API and background entry points."""

from __future__ import annotations

import logging

import structlog

from tasklens.config import Settings, get_settings

_LOG_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def _get_log_level(settings: Settings) -> int:
    return _LOG_LEVEL_MAP.get(settings.log_level.lower(), logging.INFO)


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
            if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level(settings)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
