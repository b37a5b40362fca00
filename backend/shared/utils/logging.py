"""
Structured logging for blockrecon services.
Uses structlog for context-rich, machine-parseable logs.

Log lines go to stderr by default so that stdout carries nothing but the
final report; ``BR_LOG_STREAM=stdout`` interleaves them instead.
"""
from __future__ import annotations

import logging
import sys
from typing import Any, Optional, TextIO

import structlog
from shared.config import Environment, get_settings

NOISY_LOGGERS = ("httpx", "httpcore", "websockets", "asyncio")


def resolve_log_stream(name: str) -> TextIO:
    """Map a configured stream name to the live interpreter stream."""
    if name == "stdout":
        return sys.stdout
    if name == "stderr":
        return sys.stderr
    raise ValueError(f"unknown log stream {name!r}")


def _renderer(environment: Environment, stream: TextIO) -> structlog.types.Processor:
    if environment is Environment.DEV:
        isatty = getattr(stream, "isatty", None)
        return structlog.dev.ConsoleRenderer(colors=bool(isatty and isatty()))
    return structlog.processors.JSONRenderer()


def setup_logging(
    service_name: str,
    extra_context: dict[str, Any] | None = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure structured logging for a service.

    Args:
        service_name: The service identifier (e.g. blockrecon).
        extra_context: Additional static context fields bound to every log entry.
        stream: Explicit destination; defaults to the ``log_stream`` setting.
    """
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    target = stream if stream is not None else resolve_log_stream(settings.log_stream)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings.environment, target),
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(target)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    # Bind static service context
    structlog.contextvars.clear_contextvars()
    bound: dict[str, Any] = {"service": service_name, "instance_id": settings.instance_id}
    if extra_context:
        bound.update(extra_context)
    structlog.contextvars.bind_contextvars(**bound)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)
