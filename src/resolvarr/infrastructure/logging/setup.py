from __future__ import annotations

import atexit
import copy
import logging
import queue
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Optional

import structlog

from resolvarr.infrastructure.config.schema import AppConfig

log = structlog.get_logger(__name__)

# Third-party loggers that are chatty at DEBUG.
_QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "hpack")

_QUEUE_LISTENER: Optional[QueueListener] = None
_ATEXIT_REGISTERED = False


def _record_created_timestamp(
    _: Any, __: Any, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Stamp foreign (stdlib) records with their creation time.

    The queue listener formats records later on its own thread, so a
    TimeStamper there would record the formatting time instead.
    """
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        event_dict["timestamp"] = dt.isoformat().replace("+00:00", "Z")
    return event_dict


def _renderer(config: AppConfig) -> structlog.typing.Processor:
    if config.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def build_formatter(config: AppConfig) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            _record_created_timestamp,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(config),
        ],
    )


class _LevelRangeFilter(logging.Filter):
    def __init__(self, min_level: int = logging.NOTSET, max_level: int = logging.CRITICAL) -> None:
        super().__init__()
        self._min_level = min_level
        self._max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return self._min_level <= record.levelno <= self._max_level


class _StructlogQueueHandler(QueueHandler):
    """QueueHandler that keeps structlog's dict message intact."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The default prepare() renders record.msg to a string, which
        # ProcessorFormatter can no longer process.
        return copy.copy(record)


def _stop_listener() -> None:
    global _QUEUE_LISTENER
    if _QUEUE_LISTENER is not None:
        try:
            _QUEUE_LISTENER.stop()
        finally:
            _QUEUE_LISTENER = None


def _start_listener(config: AppConfig) -> None:
    """Send all stdlib logging through a queue drained on a background thread.

    Emission never blocks the event loop. DEBUG to WARNING go to stdout,
    ERROR and above to stderr.
    """
    global _QUEUE_LISTENER, _ATEXIT_REGISTERED

    _stop_listener()
    formatter = build_formatter(config)

    stdout_handler = logging.StreamHandler(stream=sys.stdout)
    stdout_handler.setFormatter(formatter)
    stdout_handler.addFilter(_LevelRangeFilter(max_level=logging.WARNING))

    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.addFilter(_LevelRangeFilter(min_level=logging.ERROR))

    q: queue.Queue[logging.LogRecord] = queue.Queue()

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_StructlogQueueHandler(q))
    root.setLevel(config.log_level)

    quiet_level = max(logging.getLevelName(config.log_level), logging.INFO)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _QUEUE_LISTENER = QueueListener(q, stdout_handler, stderr_handler, respect_handler_level=True)
    _QUEUE_LISTENER.start()
    if not _ATEXIT_REGISTERED:
        atexit.register(_stop_listener)
        _ATEXIT_REGISTERED = True


def configure_logging(config: AppConfig) -> None:
    """Configure structlog on top of stdlib logging.

    Renders JSON when ``config.log_format`` is ``"json"`` (the production
    default) and a console layout otherwise.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _start_listener(config)
    log.info("logging_configured", log_format=config.log_format, log_level=config.log_level)
