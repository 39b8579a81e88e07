from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog
from structlog.typing import EventDict, Processor

from backend.tubesummary.config import AppSettings
from backend.tubesummary.telemetry import TELEMETRY_LOGGER_NAME

APP_LOGGER_NAME = "tubesummary"
LOG_FILE_NAME = "tubesummary.log"
TELEMETRY_LOG_FILE_NAME = "tubesummary-telemetry.log"

# SDK loggers that would otherwise print request lines for every completion call.
UPSTREAM_LIBRARY_LOGGERS: tuple[str, ...] = ("openai", "httpx", "httpcore")


def configure_application_logging(settings: AppSettings) -> Path:
    """Route `tubesummary.*` records to stdout and a JSON log file.

    Telemetry events get a file of their own. Upstream SDK loggers are capped at
    WARNING and written to the JSON file only.
    """
    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME
    console_level = _resolve_log_level(settings.log_level)

    _configure_structlog()

    json_formatter = _json_formatter()
    file_handler = _file_handler(log_file, level=logging.DEBUG, formatter=json_formatter)
    console_handler = _console_handler(sys.stdout, level=console_level)

    _attach(logging.getLogger(APP_LOGGER_NAME), logging.DEBUG, console_handler, file_handler)
    for library_logger in UPSTREAM_LIBRARY_LOGGERS:
        _attach(logging.getLogger(library_logger), logging.WARNING, file_handler)
    _attach(
        logging.getLogger(TELEMETRY_LOGGER_NAME),
        logging.INFO,
        _file_handler(
            log_dir / TELEMETRY_LOG_FILE_NAME,
            level=logging.INFO,
            formatter=json_formatter,
        ),
    )

    logging.getLogger(APP_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s",
        logging.getLevelName(console_level),
        log_file,
    )
    return log_file


def _resolve_log_level(raw_level: str) -> int:
    resolved = logging.getLevelName(raw_level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _attach(logger: logging.Logger, level: int, *handlers: logging.Handler) -> None:
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        logger.addHandler(handler)


def _file_handler(
    path: Path,
    *,
    level: int,
    formatter: logging.Formatter,
) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _console_handler(stream: TextIO, *, level: int) -> logging.StreamHandler[TextIO]:
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=_stream_supports_color(stream)),
            ],
        )
    )
    return handler


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_pre_chain(),
        processors=[
            _add_source_location,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
    )


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _add_source_location(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if not isinstance(record, logging.LogRecord):
        return event_dict
    event_dict["pathname"] = record.pathname
    event_dict["lineno"] = record.lineno
    event_dict["func_name"] = record.funcName
    # Set by Python 3.12+ when the record is emitted from inside an asyncio task.
    task_name = getattr(record, "taskName", None)
    if task_name:
        event_dict["task"] = task_name
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except Exception:
        return False
