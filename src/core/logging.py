"""
Structured logging for the for-you services, built on structlog.

Every module logs key-value events through get_logger(). Console output is
colored for local development; JSON lines are emitted in production so the
log pipeline can index fields like scope, seed_handle or elapsed_ms.

Usage:
    from core.logging import configure_logging, get_logger

    configure_logging(json_logs=True, log_level="INFO")   # once, at startup

    logger = get_logger(__name__)
    logger.info("Feed page served", scope="guest", items=40)
    logger.warning("Candidate source failed", source="search", error=str(e))
"""

import logging
import sys
from typing import Any, List, Optional

import structlog
from structlog.types import Processor


DEFAULT_LOG_LEVEL = "INFO"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "redis")


def _resolve_level(log_level: Optional[str]) -> int:
    """Map a level name to its numeric value; unknown names mean INFO."""
    level = logging.getLevelName((log_level or DEFAULT_LOG_LEVEL).upper())
    return level if isinstance(level, int) else logging.INFO


def _build_processors(json_logs: bool, include_timestamp: bool) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if include_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_logs:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        ))
    return processors


def configure_logging(
    json_logs: bool = False,
    log_level: str = DEFAULT_LOG_LEVEL,
    include_timestamp: bool = True,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call more than once (tests reconfigure freely).

    Args:
        json_logs: JSON lines (production) instead of colored console output
        log_level: Minimum level name; unknown names fall back to INFO
        include_timestamp: Prefix events with a UTC ISO timestamp
    """
    level = _resolve_level(log_level)

    structlog.configure(
        processors=_build_processors(json_logs, include_timestamp),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging_from_settings(settings: Any) -> None:
    """Configure logging from a Settings instance (json_logs, log_level)."""
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Structured logger, typically get_logger(__name__)."""
    return structlog.get_logger(name)


# =============================================================================
# Request-scoped context
# =============================================================================

def bind_context(**kwargs: Any) -> None:
    """
    Attach key-values to every log event in the current context.

    The tracing middleware binds request_id and customer_id this way.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop all bound context; called at the end of each request."""
    structlog.contextvars.clear_contextvars()


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


class LoggerMixin:
    """
    Gives a class a `logger` named after it.

    Usage:
        class ForYouService(LoggerMixin):
            def get_feed_page(self, identity):
                self.logger.info("Feed page served", scope=identity.scope)
    """

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(self.__class__.__name__)
