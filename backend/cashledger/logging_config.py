"""Logging setup for the ledger core: named loggers plus an optional JSON line formatter."""

from __future__ import annotations

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
]

import json
import logging
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

_LOGGER_PREFIX = "cashledger"


class LogContext:
    """Request-scoped fields merged into every structured record."""

    _actor_id: ContextVar[str | None] = ContextVar("log_actor_id", default=None)
    _correlation_id: ContextVar[str | None] = ContextVar("log_correlation_id", default=None)

    _FIELD_NAMES = ("actor_id", "correlation_id")

    @classmethod
    def get_all(cls) -> dict[str, str]:
        ctx: dict[str, str] = {}
        for name in cls._FIELD_NAMES:
            val = getattr(cls, f"_{name}").get()
            if val is not None:
                ctx[name] = val
        return ctx

    @classmethod
    def bind(cls, **kwargs: Any) -> "_LogContextManager":
        """Context manager that sets fields on entry and restores on exit."""
        return _LogContextManager(**kwargs)


class _LogContextManager:
    def __init__(self, **kwargs: Any):
        self._kwargs = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> type[LogContext]:
        for key, val in self._kwargs.items():
            var = getattr(LogContext, f"_{key}", None)
            if var is not None and val is not None:
                self._tokens[key] = var.set(str(val))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for key, token in self._tokens.items():
            getattr(LogContext, f"_{key}").reset(token)


_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the cashledger namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(level: str | int = "INFO", json_output: bool = False) -> logging.Logger:
    """
    Install a single stream handler on the package logger.

    Safe to call more than once (tests build several apps); the previous
    handler installed here is replaced rather than stacked.
    """
    root = logging.getLogger(_LOGGER_PREFIX)
    for handler in list(root.handlers):
        if getattr(handler, "_cashledger_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._cashledger_handler = True  # type: ignore[attr-defined]
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    return root
