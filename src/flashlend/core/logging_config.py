"""
Flash-Loan Protocol - Structured Logging Configuration

Every protocol module logs through ``logging.getLogger(__name__)`` with an
``extra={"event": "<component>.<action>", ...}`` payload. This module turns
those records into one JSON object per line:
- ``event`` always present (falls back to the logger name)
- timestamp taken from the record, not from formatting time
- service/environment context and source location
- console and size-rotated file output

Usage:
    from flashlend.core.logging_config import setup_logging

    logger = setup_logging(level="INFO", log_file="/var/log/flashlend/protocol.json")
    logger.info("Flash loan executed", extra={"event": "flash_loan.executed", "amount": 1000})
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from pythonjsonlogger import jsonlogger

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
ROOT_LOGGER = "flashlend"


class ProtocolJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter stamping protocol context onto each record."""

    def __init__(self, environment: str = "production", service_name: str = ROOT_LOGGER):
        super().__init__(fmt="%(level)s %(name)s %(message)s")
        self.environment = environment
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname.lower()
        log_record.setdefault("event", record.name)
        log_record["environment"] = self.environment
        log_record["service"] = self.service_name
        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def _resolve_level(level: str) -> int:
    if str(level).upper() not in VALID_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of {VALID_LEVELS}")
    return getattr(logging, str(level).upper())


def _build_handlers(
    formatter: logging.Formatter,
    enable_console: bool,
    stream: Optional[TextIO],
    log_file: Optional[str],
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []

    if enable_console:
        handlers.append(logging.StreamHandler(stream or sys.stdout))

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                filename=str(log_path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    name: str = ROOT_LOGGER,
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "production",
    enable_console: bool = True,
    enable_file: bool = True,
    max_bytes: int = 100 * 1024 * 1024,  # 100MB
    backup_count: int = 10,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Attach JSON handlers to the ``name`` logger.

    Child loggers such as ``flashlend.core.defi.flash_loans`` propagate into
    it. Calling this again replaces the handlers installed previously.

    Args:
        name: Logger to configure
        log_file: Rotating JSON log file, used when ``enable_file`` is set
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        environment: Environment label added to every record
        enable_console: Log to ``stream``
        enable_file: Log to ``log_file``
        max_bytes: File size that triggers rotation
        backup_count: Rotated files kept
        stream: Console stream, defaults to stdout

    Returns:
        The configured logger

    Raises:
        ValueError: Unknown level
    """
    numeric_level = _resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = ProtocolJsonFormatter(environment=environment, service_name=name.split(".")[0])
    try:
        handlers = _build_handlers(
            formatter,
            enable_console,
            stream,
            log_file if enable_file else None,
            max_bytes,
            backup_count,
        )
    except OSError as e:
        # Keep console output when the log directory is not writable
        handlers = _build_handlers(formatter, enable_console, stream, None, max_bytes, backup_count)
        for handler in handlers:
            logger.addHandler(handler)
        logger.warning(
            "Could not create file handler for %s: %s",
            log_file,
            e,
            extra={"event": "logging.file_handler_failed"},
        )
        return logger

    for handler in handlers:
        logger.addHandler(handler)
    return logger


def setup_logging_from_config(
    logging_config: Any,
    environment: str = "production",
    level: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the protocol logger from a ``LoggingConfig`` section.

    ``level`` overrides the configured level when given.
    """
    return setup_logging(
        name=ROOT_LOGGER,
        log_file=logging_config.log_file or None,
        level=level or logging_config.level,
        environment=environment,
        enable_console=logging_config.enable_console,
        enable_file=logging_config.enable_file,
        max_bytes=logging_config.max_log_size,
        backup_count=logging_config.backup_count,
        stream=stream,
    )
