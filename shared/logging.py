"""
Structured logging shared by every component.

Loggers are addressed by (component, module) and take an event name plus
keyword fields instead of a formatted message:

    log = get_logger("analysis", "domain")
    log.info("analysis.domain.request_sent", domain="ontologyAnalysis", code="1-2")

Records go through the standard logging module. configure_logging() attaches
one JSON-lines file per component (logs/<component>.jsonl) and, optionally,
a rich console handler. Without it, records propagate to the root logger,
which is what pytest's caplog sees.
"""

import json
import logging
import traceback
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from rich.logging import RichHandler

PROJECT_ROOT = Path(__file__).resolve().parent.parent
LOGS_DIR = PROJECT_ROOT / "logs"

ROOT_LOGGER_NAME = "philoscope"
COMPONENTS = ("shared", "llm", "analysis", "persona", "cli")

_configured = False


class JsonLinesFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, component, module, event, fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": getattr(record, "component", ""),
            "module": getattr(record, "module_name", ""),
            "event": record.getMessage(),
        }
        entry.update(getattr(record, "fields", {}) or {})
        if record.exc_info:
            entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Event name followed by key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        fields = getattr(record, "fields", {}) or {}
        pairs = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"{record.getMessage()} {pairs}".rstrip()


class StructuredLogger:
    """Thin wrapper that turns keyword arguments into record fields."""

    def __init__(self, component: str, module_name: str):
        self.component = component
        self.module_name = module_name
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}.{module_name}")

    def _log(self, level: int, event: str, fields: dict, exc_info=None) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            event,
            exc_info=exc_info,
            extra={
                "component": self.component,
                "module_name": self.module_name,
                "fields": fields,
            },
        )

    def debug(self, event: str, **fields) -> None:
        self._log(logging.DEBUG, event, fields)

    def info(self, event: str, **fields) -> None:
        self._log(logging.INFO, event, fields)

    def warning(self, event: str, **fields) -> None:
        self._log(logging.WARNING, event, fields)

    def error(self, event: str, **fields) -> None:
        self._log(logging.ERROR, event, fields)

    def exception(self, exc: BaseException, event: str, context: Optional[dict] = None) -> None:
        """Log an exception with its type, message and traceback."""
        fields = dict(context or {})
        fields["error_type"] = type(exc).__name__
        fields["error"] = str(exc)
        fields["traceback"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
        self._log(logging.ERROR, event, fields)


def get_logger(component: str, module_name: str) -> StructuredLogger:
    """Get a structured logger for a component module."""
    return StructuredLogger(component, module_name)


class _ComponentFilter(logging.Filter):
    def __init__(self, component: str):
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        return getattr(record, "component", None) == self.component


def configure_logging(
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    console: bool = False,
) -> None:
    """
    Attach file (and optionally console) handlers.

    Safe to call more than once; only the first call installs handlers.

    Args:
        log_dir: Directory for <component>.jsonl files (default: logs/)
        level: Minimum level name
        console: Also echo records to stderr through rich
    """
    global _configured
    if _configured:
        return

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    log_dir = Path(log_dir) if log_dir else LOGS_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    for component in COMPONENTS:
        handler = logging.FileHandler(log_dir / f"{component}.jsonl", encoding="utf-8")
        handler.setFormatter(JsonLinesFormatter())
        handler.addFilter(_ComponentFilter(component))
        root.addHandler(handler)

    if console:
        console_handler = RichHandler(show_path=False, markup=False)
        console_handler.setFormatter(ConsoleFormatter())
        root.addHandler(console_handler)

    root.propagate = False
    _configured = True


def timestamped(sink: Callable[[str], None]) -> Callable[[str], None]:
    """Wrap a progress sink so every line is prefixed with [HH:MM:SS]."""

    def emit(message: str) -> None:
        sink(f"[{datetime.now().strftime('%H:%M:%S')}] {message}")

    return emit
