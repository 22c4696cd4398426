"""Run-aware logging helpers."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(run)s]: %(message)s"

LogEntry = Dict[str, Any]


def _level_name(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


class RunLogCollector(logging.Handler):
    """Logging handler that turns one run's records into report log entries."""

    def __init__(self, run_id: str, sink: Optional[Callable[[LogEntry], None]] = None) -> None:
        super().__init__()
        self.run_id = run_id
        self._slots: List[Callable[[LogEntry], None]] = []
        if sink is not None:
            self.connect(sink)

    def connect(self, slot: Callable[[LogEntry], None]) -> None:
        self._slots.append(slot)

    def emit(self, record: logging.LogRecord) -> None:
        if getattr(record, "run", None) != self.run_id:
            return
        try:
            message = record.getMessage()
        except Exception:
            message = str(record.msg)
        entry: LogEntry = {
            "timestamp": record.created,
            "level": _level_name(record.levelno),
            "message": message,
            "stepId": getattr(record, "step", None),
        }
        for slot in list(self._slots):
            slot(entry)


class RunContextFilter(logging.Filter):
    """Ensure every log record has run/step attributes for formatting."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run") or record.run in (None, ""):
            record.run = "-"
        if not hasattr(record, "step"):
            record.step = None
        return True


RUN_FILTER = RunContextFilter()


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if RUN_FILTER not in handler.filters:
            handler.addFilter(RUN_FILTER)
