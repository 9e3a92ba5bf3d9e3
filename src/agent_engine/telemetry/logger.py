"""Structured logging configuration using structlog.

Every engine module logs through ``get_logger(__name__)``. Events are rendered
as JSON lines into ``<log_dir>/current.jsonl`` (rotated) and to stderr, either
as JSON or pretty-printed depending on ``AGENT_LOG_FORMAT``.
"""

import logging
import logging.handlers
import pathlib
import sys
from datetime import datetime, timezone
from typing import Any

import orjson
import structlog

LOG_FILE_NAME = "current.jsonl"
LOG_FILE_MAX_BYTES = 50 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Third-party loggers that are too chatty at DEBUG.
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def _get_log_level() -> str:
    # Settings import telemetry, so read the bootstrap values instead.
    from agent_engine.config.bootstrap import get_bootstrap_log_level  # noqa: PLC0415

    return get_bootstrap_log_level()


def _get_log_format() -> str:
    from agent_engine.config.bootstrap import get_bootstrap_log_format  # noqa: PLC0415

    return get_bootstrap_log_format()


def _get_log_dir() -> pathlib.Path | None:
    from agent_engine.config.bootstrap import get_bootstrap_log_dir  # noqa: PLC0415

    return get_bootstrap_log_dir()


def _dumps(event_dict: dict[str, Any], **kwargs: Any) -> str:
    """Serialize one event with orjson for JSONRenderer."""
    return orjson.dumps(event_dict, default=kwargs.get("default", str)).decode("utf-8")


def _add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Stamp stdlib records with a UTC timestamp."""
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _add_component(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Add the component name to a log event.

    The component is the last segment of the logger name, so
    ``agent_engine.orchestrator.executor`` logs as ``executor``. Works for
    stdlib records (``logger.name``) and structlog events (the ``logger`` key).
    """
    logger_name = event_dict.get("logger") or getattr(logger, "name", "") or ""
    event_dict["component"] = logger_name.split(".")[-1] if logger_name else "unknown"
    return event_dict


def _formatter(renderer: Any) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _add_timestamp,  # type: ignore[list-item]
            _add_component,
        ],
    )


def _file_handler(log_dir: pathlib.Path) -> logging.Handler:
    """Rotating JSONL handler under ``log_dir``."""
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=str(log_dir / LOG_FILE_NAME),
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer(serializer=_dumps)))
    handler.setLevel(logging.INFO)
    return handler


def _console_handler(log_format: str, level: int) -> logging.Handler:
    """Stderr handler rendering JSON or pretty console lines."""
    handler = logging.StreamHandler(sys.stderr)
    if log_format == "console":
        renderer: Any = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    else:
        renderer = structlog.processors.JSONRenderer(serializer=_dumps)
    handler.setFormatter(_formatter(renderer))
    handler.setLevel(level)
    return handler


def configure_logging() -> None:
    """Configure structlog and the root logger.

    Called once on first logger use. The file handler always keeps INFO and
    above; the console follows ``AGENT_LOG_LEVEL``.
    """
    level = getattr(logging, _get_log_level(), logging.INFO)
    log_dir = _get_log_dir()

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_dir is not None:
        root_logger.addHandler(_file_handler(log_dir))
    root_logger.addHandler(_console_handler(_get_log_format(), level))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            _add_component,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:  # structlog.stdlib.BoundLogger
    """Get a structured logger, configuring logging on first use.

    Args:
        name: Logger name, usually the calling module's ``__name__``.

    Returns:
        A structlog bound logger.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("node_started", node="agent_executor", session_id="abc")
    """
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(name)
