"""
Workflow Logging

Logging setup for hosts and the workflow CLI, plus an instance-bound logger.

Records emitted through WorkflowLogger carry their workflow fields
(instance_id, node_id, approval_id, ...) in `extra_data`:
- JSONFormatter lifts the workflow fields to top-level keys so log search
  can filter one instance without parsing messages
- ColoredFormatter appends them as a short [instance=12 node=gate] tag

Usage:
    configure_logging(level="INFO", format_type="json")
    log = get_instance_logger(__name__, instance.id, node_id="gate")
    log.info("Gate opened", approval_id=7)
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

# Keys promoted out of extra_data, in tag order
WORKFLOW_FIELDS = ("instance_id", "node_id", "approval_id", "port", "code")

_TAG_NAMES = {"instance_id": "instance", "node_id": "node", "approval_id": "approval"}

# Third-party loggers that drown the workflow logs below WARNING
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "apscheduler.scheduler", "apscheduler.executors", "httpx")


def _workflow_fields(record: logging.LogRecord) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a record's extra_data into (workflow fields, everything else)."""
    extra_data = getattr(record, "extra_data", None) or {}
    fields = {key: extra_data[key] for key in WORKFLOW_FIELDS if extra_data.get(key) is not None}
    rest = {key: value for key, value in extra_data.items() if key not in WORKFLOW_FIELDS}
    return fields, rest


class JSONFormatter(logging.Formatter):
    """One JSON object per record, workflow fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        fields, rest = _workflow_fields(record)
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **fields,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if rest:
            log_data["extra"] = rest

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter: colored level and a trailing workflow tag."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str | None = None, datefmt: str | None = None, use_color: bool = True):
        super().__init__(fmt, datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers keep the plain level name
        record = logging.makeLogRecord(record.__dict__)
        if self.use_color:
            color = self.COLORS.get(record.levelname, self.RESET)
            record.levelname = f"{color}{record.levelname}{self.RESET}"

        line = super().format(record)
        fields, _ = _workflow_fields(record)
        if not fields:
            return line
        tag = " ".join(f"{_TAG_NAMES.get(key, key)}={value}" for key, value in fields.items())
        return f"{line} [{tag}]"


class WorkflowLogger:
    """
    Logger bound to workflow fields.

    Every call merges the bound fields with its keyword arguments into the
    record's `extra_data`; call-site keywords win on conflicts.

    Args:
        name: Logger name (typically __name__)
        fields: Fields attached to every record
    """

    def __init__(self, name: str, fields: dict[str, Any] | None = None):
        self._logger = logging.getLogger(name)
        self._fields = fields or {}

    @property
    def fields(self) -> dict[str, Any]:
        return dict(self._fields)

    def bind(self, **fields: Any) -> "WorkflowLogger":
        """New logger with extra bound fields (e.g. the next node)."""
        return WorkflowLogger(self._logger.name, {**self._fields, **fields})

    def _log(self, level: int, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._logger.log(level, message, exc_info=exc_info, extra={"extra_data": {**self._fields, **kwargs}})

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, message, exc_info=True, **kwargs)


def configure_logging(
    level: str = "INFO",
    format_type: str = "colored",
    log_file: str | None = None,
) -> None:
    """
    Configure logging for a host process or the workflow CLI.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'colored', 'json', or 'plain'
        log_file: Optional path; the file always gets JSON lines

    SQLAlchemy, APScheduler and httpx loggers are held at WARNING.
    """
    log_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    line_format = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    if format_type == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            ColoredFormatter(line_format, datefmt="%Y-%m-%d %H:%M:%S", use_color=format_type == "colored")
        )
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_instance_logger(name: str, instance_id: int, **fields: Any) -> WorkflowLogger:
    """Logger bound to one workflow instance."""
    return WorkflowLogger(name, {"instance_id": instance_id, **fields})
