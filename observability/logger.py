"""Console and JSONL logging for espcli.

Every module logs through a child of the ``espcli`` logger.
``configure_logging`` decides where those records end up: colored lines on
stderr for people, ``structured/espcli.jsonl`` for tooling and a plain
``espcli.log`` next to it.
"""

import json
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

ROOT_LOGGER_NAME = "espcli"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Device output ends up in log context; keep \t \n \r, drop the other C0 controls
_CONTROL_CHARS = dict.fromkeys(c for c in range(32) if chr(c) not in "\t\n\r")

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        return value.translate(_CONTROL_CHARS)
    if isinstance(value, (list, tuple)):
        return type(value)(_clean(item) for item in value)
    if isinstance(value, dict):
        return {key: _clean(item) for key, item in value.items()}
    return value


class ConsoleFormatter(logging.Formatter):
    """Text formatter that colors the level name."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: str | None = TEXT_FORMAT,
        datefmt: str | None = DATE_FORMAT,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def formatMessage(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelno not in self.LEVEL_COLORS:
            return super().formatMessage(record)
        # Other handlers format the same record object
        levelname = record.levelname
        record.levelname = f"{self.LEVEL_COLORS[record.levelno]}{levelname}{self.RESET}"
        try:
            return super().formatMessage(record)
        finally:
            record.levelname = levelname


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp``, ``level``, ``logger``, ``message``, ``module``,
    ``function`` and ``line``, plus ``exception`` when a traceback is
    attached and ``context`` holding the keyword context of the call.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _clean(record.getMessage()),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            entry["exception"] = _clean(self.formatException(record.exc_info))

        context = {
            key: _clean(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if context:
            entry["context"] = context
        return json.dumps(entry, ensure_ascii=False, default=str)


def _rotating_handler(
    path: Path, level: int, formatter: logging.Formatter, max_bytes: int, backups: int
) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    log_dir: Path | None = None,
    console_enabled: bool = True,
    json_enabled: bool = True,
    level: int | str = logging.INFO,
    max_file_size: int = 10_000_000,
    backup_count: int = 5,
) -> logging.Logger:
    """Install handlers on the ``espcli`` logger, replacing earlier ones.

    Args:
        log_dir: Directory for log files. No files are written when None.
        console_enabled: Log to stderr.
        json_enabled: Write the JSONL and text files under ``log_dir``.
        level: Console log level. The JSONL file always gets DEBUG.
        max_file_size: Rotation size of each log file in bytes.
        backup_count: Rotated files to keep.

    Returns:
        The ``espcli`` logger.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if console_enabled:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(ConsoleFormatter())
        root.addHandler(console)

    if json_enabled and log_dir is not None:
        log_dir = Path(log_dir)
        root.addHandler(
            _rotating_handler(
                log_dir / "structured" / f"{ROOT_LOGGER_NAME}.jsonl",
                logging.DEBUG,
                JsonLineFormatter(),
                max_file_size,
                backup_count,
            )
        )
        root.addHandler(
            _rotating_handler(
                log_dir / f"{ROOT_LOGGER_NAME}.log",
                logging.INFO,
                logging.Formatter(TEXT_FORMAT, DATE_FORMAT),
                max_file_size,
                backup_count,
            )
        )

    # Unconfigured, records go to whatever the host application set up
    root.propagate = not root.handlers
    return root


class ESPLogger:
    """Logger wrapper taking structured context as keyword arguments.

    Example:
        logger = get_logger("operations")
        logger.info("Build started", operation_id="op_1_abc", target="esp32s3")
        logger.log_operation("build", "op_1_abc", duration=5.2, success=True)
    """

    def __init__(self, name: str):
        if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
            name = f"{ROOT_LOGGER_NAME}.{name}"
        self.name = name
        self.logger = logging.getLogger(name)

    def _log(
        self, level: int, message: str, exception: BaseException | None, context: dict
    ) -> None:
        exc_info = None
        if exception is not None:
            exc_info = (type(exception), exception, exception.__traceback__)
        self.logger.log(level, message, exc_info=exc_info, extra=context, stacklevel=3)

    def debug(self, message: str, **context) -> None:
        self._log(logging.DEBUG, message, None, context)

    def info(self, message: str, **context) -> None:
        self._log(logging.INFO, message, None, context)

    def warning(self, message: str, **context) -> None:
        self._log(logging.WARNING, message, None, context)

    def error(self, message: str, exception: BaseException | None = None, **context) -> None:
        """Log at ERROR, with the traceback of ``exception`` when given."""
        self._log(logging.ERROR, message, exception, context)

    def critical(self, message: str, **context) -> None:
        self._log(logging.CRITICAL, message, None, context)

    def log_operation(
        self,
        kind: str,
        operation_id: str,
        duration: float,
        success: bool,
        error_code: str | None = None,
    ) -> None:
        """Log the end of an operation, at ERROR when it failed."""
        status = "SUCCESS" if success else "FAILED"
        self._log(
            logging.INFO if success else logging.ERROR,
            f"Operation {status}: {kind} ({duration:.2f}s)",
            None,
            {
                "event_type": "operation",
                "operation_kind": kind,
                "operation_id": operation_id,
                "duration_seconds": round(duration, 3),
                "success": success,
                "error_code": error_code,
            },
        )

    def log_diagnosis(self, operation_id: str, diagnosis: dict, output: str) -> None:
        """Log what the diagnostics engine recognized in failed tool output."""
        self._log(
            logging.WARNING,
            f"Recognized {', '.join(diagnosis['patterns'])} in tool output",
            None,
            {
                "event_type": "error_diagnosis",
                "operation_id": operation_id,
                "output_tail": output[-500:],
                **diagnosis,
            },
        )
