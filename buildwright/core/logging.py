"""
Structured logging configuration for Buildwright.

Every generation run executes in its own asyncio task, so correlation fields
(``session_id``, ``phase``, ``agent``) are carried in structlog contextvars and
scoped with ``log_context``. Concurrent sessions never see each other's fields.
Rendering is human-readable on a terminal and JSON lines elsewhere.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from .config import Config

CORRELATION_KEYS = ("session_id", "phase", "agent")

# Provider SDKs and their HTTP stack are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


def order_correlation_fields(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Put correlation fields right after the event name and drop unset ones."""
    fields = {key: event_dict.pop(key, None) for key in CORRELATION_KEYS}
    ordered: dict[str, Any] = {}
    if "event" in event_dict:
        ordered["event"] = event_dict.pop("event")
    ordered.update({key: value for key, value in fields.items() if value is not None})
    ordered.update(event_dict)
    return ordered


def _use_json(config: Config | None) -> bool:
    log_format = config.log_format if config else "auto"
    if log_format == "auto":
        return not sys.stderr.isatty()
    return log_format == "json"


def setup_logging(config: Config | None = None) -> None:
    """Configure structured logging for the application.

    Args:
        config: Optional configuration. If None, uses INFO level and picks the
            renderer from the terminal.
    """
    log_level = config.log_level if config else "INFO"
    level = getattr(logging, log_level, logging.INFO)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=log_level == "DEBUG",
    )
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler])
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        order_correlation_fields,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if _use_json(config):
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty(), sort_keys=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)
    """
    return structlog.get_logger(name)


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind correlation fields for the duration of a block.

    Previous values are restored on exit, so nested scopes (session, then
    phase, then agent) unwind cleanly.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield
