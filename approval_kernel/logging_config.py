"""
Structured logging for the approval kernel.

Every record under the ``approval_kernel`` logger is rendered as a single
JSON line.  The workflow context bound by a command (the request being
decided, the acting user, the business entity) is stamped onto every line
emitted while the command runs, so one approval can be followed across
the service, repository and event dispatch without threading ids through
each log call.

Usage::

    logger = get_logger("services.approval_command")

    with LogContext.bind(approval_request_id=request_id, actor_id=user_id):
        logger.info("approval_level_approved", extra={"level_order": 1})

``extra`` keys must not shadow ``logging.LogRecord`` attributes (``created``,
``name``, ``module`` ...); the standard library rejects those with KeyError.
"""

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from approval_kernel.exceptions import ApprovalKernelError

LOGGER_NAME = "approval_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "approval_request_id",
    "entity_type",
    "entity_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar(
    "approval_log_context", default=_EMPTY
)


def _merged(fields: dict[str, Any]) -> Mapping[str, str]:
    unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
    if unknown:
        raise TypeError(f"Unknown log context field(s): {', '.join(unknown)}")
    merged = dict(_context.get())
    merged.update({k: str(v) for k, v in fields.items() if v is not None})
    return MappingProxyType(merged)


class LogContext:
    """Workflow fields attached to every log line of the current task.

    Values are stored as strings; ``None`` leaves a field untouched.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        _context.set(_merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of a block, then restore the outer context."""
        token = _context.set(_merged(fields))
        try:
            yield LogContext
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else on a record came from ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    if isinstance(exc, ApprovalKernelError):
        fields["exc_code"] = exc.code
        for name, value in vars(exc).items():
            if not name.startswith("_"):
                fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: base fields, bound context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


_installed: logging.Handler | None = None
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the kernel logger.

    Only the first call has an effect; later calls (for instance the one
    made by ``init_engine_from_url``) keep the level and handler already
    installed.
    """
    global _installed
    with _lock:
        if _installed is not None:
            return
        _installed = handler or logging.StreamHandler(stream or sys.stderr)
        _installed.setFormatter(StructuredFormatter())

        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(level)
        logger.propagate = False
        logger.addHandler(_installed)


def reset_logging() -> None:
    """Remove the handler installed by ``configure_logging``. Tests only."""
    global _installed
    with _lock:
        logger = logging.getLogger(LOGGER_NAME)
        if _installed is not None:
            logger.removeHandler(_installed)
            _installed = None
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
