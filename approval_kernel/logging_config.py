"""
JSON logging for the approval kernel.

Every record under the ``approval_kernel`` logger tree is rendered as one
JSON object per line.  Request-scoped identifiers (correlation id, the
acting principal, the enrollment and step being decided) live in a
``ContextVar`` and are merged into each record, so a service only has to
pass the fields specific to the event it is logging.

    configure_logging(level="DEBUG")
    with LogContext.bind(enrollment_id=enrollment_id, actor_id=principal_id):
        service.decide(...)
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

ROOT_LOGGER_NAME = "approval_kernel"

CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "enrollment_id",
    "course_tab_id",
    "step_id",
)

# Replaced wholesale on every change, never mutated in place.
_context: ContextVar[Mapping[str, str]] = ContextVar("approval_log_context", default={})


def _merged(updates: Mapping[str, Any]) -> dict[str, str]:
    unknown = set(updates) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"unknown log context field(s): {', '.join(sorted(unknown))}")
    fields = dict(_context.get())
    fields.update({k: str(v) for k, v in updates.items() if v is not None})
    return fields


class LogContext:
    """Request-scoped log fields, isolated per thread and per task."""

    @staticmethod
    def set(
        *,
        correlation_id: str | None = None,
        actor_id: str | None = None,
        enrollment_id: str | None = None,
        course_tab_id: str | None = None,
        step_id: str | None = None,
    ) -> None:
        """Overwrite the given fields; ``None`` leaves a field untouched."""
        _context.set(_merged({
            "correlation_id": correlation_id,
            "actor_id": actor_id,
            "enrollment_id": enrollment_id,
            "course_tab_id": course_tab_id,
            "step_id": step_id,
        }))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """
        Set fields for the duration of a ``with`` block.

        Values are stringified, so UUIDs can be passed as-is.  On exit the
        previous fields come back, including fields that were unset.
        """
        token = _context.set(_merged(fields))
        try:
            yield LogContext
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else arrived via ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS:
                payload.setdefault(key, value)
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))
        return json.dumps(payload, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # Kernel errors keep their identifiers as public attributes.
        fields.update({
            f"exc_{name}": value
            for name, value in vars(exc).items()
            if not name.startswith("_") and name not in ("args", "code")
        })
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger for ``approval_kernel.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``approval_kernel`` logger.

    Only the first call has any effect; later calls return immediately so
    that engine start-up and test fixtures can both call it safely.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Drop handlers and allow ``configure_logging`` to run again. Tests only."""
    global _configured
    with _configure_lock:
        _configured = False
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
