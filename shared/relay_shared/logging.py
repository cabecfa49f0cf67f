"""Shared logging configuration for the relay worker and API."""

import logging
import sys
from typing import Any, List, Union
from urllib.parse import urlsplit, urlunsplit

import structlog
from structlog.types import Processor


def setup_logging(
    level: Union[str, int] = logging.INFO,
    json_format: bool = True,
) -> None:
    """
    Configure structured logging for the process.

    Records from libraries using the standard ``logging`` module (aio-pika,
    APScheduler, uvicorn) go to the same stdout handler.

    Args:
        level: Logging level (default: INFO)
        json_format: Render JSON lines instead of the developer console format
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        force=True,
        handlers=[handler],
    )
    # aiormq is chatty at INFO during reconnect storms
    logging.getLogger("aiormq").setLevel(max(level, logging.WARNING))

    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger with the given name.

    Args:
        name: Logger name

    Returns:
        Structured logger
    """
    return structlog.get_logger(name)


def mask_url(url: str) -> str:
    """Mask the password of a broker URL for logging."""
    try:
        parts = urlsplit(url)
        if not parts.password:
            return url
        netloc = parts.netloc.replace(f":{parts.password}@", ":****@")
        return urlunsplit(parts._replace(netloc=netloc))
    except ValueError:
        return "****"


def bind_request_id(request_id: str) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id)


def clear_request_id() -> None:
    structlog.contextvars.unbind_contextvars("request_id")


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables (e.g. ``job``, ``queue``) to the current task.

    Args:
        **kwargs: Context variables
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)
