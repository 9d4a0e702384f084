"""Logging for ttr runs.

Every message goes to stderr so stdout stays free for reports. Text mode
prints ``LEVEL   message``. JSON mode prints one object per line with the
structured fields (``operation``, ``ticket_id``, ``issue_number`` ...) lifted
out of the record.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

LOGGER_NAME = "ttr"
TEXT_FORMAT = "%(levelname)-7s %(message)s"

# Emitted first, in this order, when present on a record.
_LEADING_FIELDS = ("operation", "action", "ticket_id", "issue_number", "duration_ms", "error")

_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
}

# Ticket actions that warrant more than INFO.
_ACTION_LEVELS = {"fail": logging.WARNING}

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Return the caller-supplied ``extra`` attributes of ``record``."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = _record_fields(record)
        for name in _LEADING_FIELDS:
            if name in fields:
                payload[name] = fields.pop(name)
        payload.update(fields)
        return json.dumps(payload, default=str)


class _RepeatFilter(logging.Filter):
    """Drop a record identical to the one immediately before it."""

    def __init__(self) -> None:
        super().__init__()
        self._previous: tuple[Any, ...] | None = None

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _record_fields(record)
        key = (
            record.levelno,
            record.getMessage(),
            tuple(sorted((name, repr(value)) for name, value in fields.items())),
        )
        if key == self._previous:
            return False
        self._previous = key
        return True


class StructuredLogger:
    """Thin wrapper over a stdlib logger that accepts fields as keywords."""

    def __init__(
        self, name: str = LOGGER_NAME, json_logging: bool = False, level: str = "INFO"
    ) -> None:
        handler = logging.StreamHandler(sys.stderr)
        if json_logging:
            handler.setFormatter(JSONFormatter())
            handler.addFilter(_RepeatFilter())
        else:
            handler.setFormatter(logging.Formatter(TEXT_FORMAT))

        logger = logging.getLogger(name)
        logger.setLevel(_LEVELS.get(level.upper(), logging.INFO))
        for existing in list(logger.handlers):
            logger.removeHandler(existing)
        logger.addHandler(handler)
        logger.propagate = False
        self._logger = logger
        self.json_logging = json_logging

    def _log(self, level: int, message: str, fields: dict[str, Any]) -> None:
        self._logger.log(level, message, extra=fields)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields)

    def log_operation(self, operation: str, **fields: Any) -> None:
        self._log(logging.INFO, f"Operation: {operation}", {"operation": operation, **fields})

    def log_error(self, message: str, error: str | None = None, **fields: Any) -> None:
        if error:
            fields["error"] = error
        self._log(logging.ERROR, message, fields)

    def log_performance(self, operation: str, duration_ms: float, **fields: Any) -> None:
        fields.update(operation=operation, duration_ms=round(duration_ms, 2))
        self._log(logging.DEBUG, f"{operation} finished in {duration_ms:.2f}ms", fields)

    def log_ticket_action(
        self,
        action: str,
        ticket_id: str,
        issue_number: int | None = None,
        detail: str | None = None,
        **fields: Any,
    ) -> None:
        """Log one per-ticket line such as ``CREATE  ttr-1 -> #42  Title``."""
        kind = action.lower()
        fields.update(operation=f"ticket_{kind}", action=action, ticket_id=ticket_id)
        parts = [f"{action.upper():<7} {ticket_id}"]
        if issue_number:
            fields["issue_number"] = issue_number
            parts.append(f" -> #{issue_number}")
        if detail:
            parts.append(f"  {detail}")
        self._log(_ACTION_LEVELS.get(kind, logging.INFO), "".join(parts), fields)

    @contextmanager
    def timed_operation(self, operation: str, **fields: Any) -> Iterator[None]:
        """Time the enclosed block; failures are logged and re-raised."""
        start_op = f"{operation}_start"
        self._log(logging.DEBUG, f"Operation: {start_op}", {"operation": start_op, **fields})
        started = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.log_error(f"operation {operation} failed", error=str(exc), **fields)
            raise
        self.log_performance(operation, (time.perf_counter() - started) * 1000, **fields)


_GLOBAL: StructuredLogger | None = None


def get_logger() -> StructuredLogger:
    """Return the process-wide logger, creating a text one on first use."""
    global _GLOBAL  # noqa: PLW0603
    if _GLOBAL is None:
        _GLOBAL = StructuredLogger()
    return _GLOBAL


def configure_logging(json_logging: bool = False, level: str = "INFO") -> StructuredLogger:
    global _GLOBAL  # noqa: PLW0603
    _GLOBAL = StructuredLogger(json_logging=json_logging, level=level)
    return _GLOBAL
