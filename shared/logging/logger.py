"""
Logger Implementation
=====================

Configures structlog for the pipeline:
- JSON output in production, colored console output elsewhere
- Service name and version on every entry
- Secret censoring (connection strings included)
- Truncation of long values such as evidence content and quotes
- Run context binding for live runs

Version: 0.1.0
"""

import datetime
import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger


SERVICE_VERSION = "0.1.0"

SENSITIVE_KEYS = frozenset({"password", "api_key", "secret", "token", "authorization", "dsn"})

# Evidence bodies and quotes can be whole documents
MAX_VALUE_LENGTH = 500

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite", "sqlalchemy.engine")

_service_name = "regtruth"


def _add_service_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add service name and version to all log entries."""
    event_dict.setdefault("service", _service_name)
    event_dict.setdefault("version", SERVICE_VERSION)
    return event_dict


def _add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["timestamp"] = datetime.datetime.now(datetime.UTC).isoformat()
    return event_dict


def _is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    return any(s in key_lower for s in SENSITIVE_KEYS)


def _censor(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: "***REDACTED***" if _is_sensitive(str(k)) else _censor(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return type(value)(_censor(v) for v in value)
    return value


def _censor_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Censor sensitive keys, including inside nested dicts and lists."""
    return _censor(event_dict)


def _truncate_long_values(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Shorten string values longer than MAX_VALUE_LENGTH; the event name is left alone."""
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
            event_dict[key] = f"{value[:MAX_VALUE_LENGTH]}... ({len(value)} chars)"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    service_name: str = "regtruth",
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Whether to output JSON format (True for production)
        service_name: Name of the service or script for context
    """
    global _service_name
    _service_name = service_name

    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for noisy_logger in NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _add_timestamp,
        _add_service_context,
        _censor_secrets,
        _truncate_long_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Processor
    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        shared_processors.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=10),
        )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> "BoundLogger":
    """
    Get a structured logger.

    Example:
        logger = get_logger(__name__)
        logger.info("rule_composed", rule_id="abc123", concept_slug="vat-rate")
    """
    return structlog.stdlib.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind key/values to every subsequent entry in this async context.

    Example:
        bind_context(run_id="run-abc123")
        logger.info("phase_started")  # includes run_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
