"""structlog setup for the renewal service.

Every event carries the service name, logger name, level and a UTC
timestamp, plus whatever pass_id, request_id, user_id and subscription_id
are bound in the current context. Token values never reach the output.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.typing import EventDict, Processor

SERVICE_NAME = "graph-renewal"

SECRET_KEYS = frozenset({"access_token", "refresh_token", "client_secret", "code"})


def add_service_name(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = SERVICE_NAME
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential material passed as event fields."""
    for key in SECRET_KEYS.intersection(event_dict):
        value = event_dict[key]
        event_dict[key] = f"***{str(value)[-4:]}" if value else value
    return event_dict


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog on top of the standard library root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines if True, colored console output otherwise
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        add_service_name,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind fields to every later event in this context (e.g. request_id)."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def bound_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields for the duration of a block.

    Previous values of the same keys are restored on exit, so nested blocks
    (a pass binding pass_id, a user boundary binding user_id) compose.
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
