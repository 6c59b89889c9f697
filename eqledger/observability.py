"""
EQLEDGER Observability

Structured logging with correlation IDs and layer tagging.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    Ledger Components                     │
    │  logger.info("Minted", token_id=x)   @timed_operation   │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                     LedgerLogger                         │
    │  Correlation IDs, layer, operation, structured context  │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                   StructuredHandler                      │
    │        one JSON object (or text line) per record        │
    └─────────────────────────────────────────────────────────┘

Every host call runs under its own correlation id so that all records a
call produces, including its rejection, can be grouped.
"""

from __future__ import annotations

import contextvars
import functools
import json
import logging
import sys
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

from eqledger.config import get_config_manager

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


class LedgerLayer(Enum):
    """EQLEDGER components for categorization."""
    ROLES = "roles"
    LEDGER = "ledger"
    UPGRADE = "upgrade"
    HOST = "host"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        parts = [self.timestamp, self.level.upper(), self.logger, self.message]
        if self.correlation_id:
            parts.append(f"[{self.correlation_id}]")
        if self.error_code:
            parts.append(f"error={self.error_code}")
        if self.duration_ms is not None:
            parts.append(f"{self.duration_ms:.2f}ms")
        parts.extend(f"{k}={v}" for k, v in self.context.items())
        line = " ".join(parts)
        if self.exception:
            line += "\n" + self.exception
        return line


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON or text lines."""

    def __init__(self, stream: Any = None, fmt: str = "json"):
        super().__init__()
        self._stream = stream
        self.fmt = fmt

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            line = event.to_text() if self.fmt == "text" else event.to_json()
            stream = self._stream or sys.stderr
            stream.write(line + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


class LedgerLogger:
    """
    Structured logger for EQLEDGER components.

    Records carry the correlation id of the current call and the
    component layer in addition to free-form context.

    A level or format left as None follows ``observability.log_level`` and
    ``observability.log_format``, re-read before every record.
    """

    def __init__(
        self,
        name: str,
        layer: LedgerLayer,
        level: Optional[str] = None,
        fmt: Optional[str] = None,
    ):
        self.name = name
        self.layer = layer
        self._level = level
        self._fmt = fmt
        self._logger = logging.getLogger(f"eqledger.{layer.value}.{name}")

        handler = next(
            (h for h in self._logger.handlers if isinstance(h, StructuredHandler)),
            None,
        )
        if handler is None:
            handler = StructuredHandler()
            self._logger.addHandler(handler)
        self._handler = handler
        self._sync()

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _sync(self) -> None:
        """Apply the effective level and format."""
        level = self._level
        fmt = self._fmt
        if level is None or fmt is None:
            manager = get_config_manager()
            level = level or manager.get("observability.log_level")
            fmt = fmt or manager.get("observability.log_format")

        level_no = logging.getLevelName(level.upper())
        if not isinstance(level_no, int):
            level_no = logging.INFO
        if self._logger.level != level_no:
            self._logger.setLevel(level_no)
        self._handler.fmt = fmt

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._sync()
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def reset_correlation_id(token: contextvars.Token) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one if unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str, layer: LedgerLayer) -> LedgerLogger:
    """Get a logger for an EQLEDGER component, leveled and formatted from config."""
    return LedgerLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: LedgerLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            try:
                return func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                logger.operation(operation_name, duration_ms, success)
        return wrapper
    return decorator
