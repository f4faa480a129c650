"""
Bridge Observability Framework

Structured logging and audit trail for production monitoring of bridge
endpoints. Provides correlation IDs and context propagation.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    Application Code                      │
    │  logger.info("msg", asset_id=x)  audit.log(...)         │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                    BridgeLogger                          │
    │  Context propagation, correlation IDs, structured data  │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                    StructuredHandler                     │
    │  One JSON object (or text line) per log record          │
    └─────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import functools
import hashlib
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class BridgeLayer(Enum):
    """Bridge components for categorization."""
    LEDGER = "ledger"
    REGISTRY = "registry"
    PEERS = "peers"
    FEES = "fees"
    ENDPOINT = "endpoint"
    TRANSPORT = "transport"
    LIFECYCLE = "lifecycle"
    CONFIG = "config"
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
        if self.error_code:
            parts.append(f"error_code={self.error_code}")
        parts.extend(f"{k}={v}" for k, v in sorted(self.context.items()))
        return " ".join(str(p) for p in parts)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON or key=value text."""

    def __init__(self, stream: Any = None, fmt: str = "json"):
        super().__init__()
        self._stream = stream
        self.fmt = fmt

    @property
    def stream(self) -> Any:
        return self._stream if self._stream is not None else sys.stderr

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

            line = event.to_json() if self.fmt == "json" else event.to_text()
            self.stream.write(line + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class BridgeLogger:
    """
    Structured logger for bridge components.

    Automatically includes correlation IDs and layer information
    in all log events.
    """

    def __init__(
        self,
        name: str,
        layer: BridgeLayer,
        level: Optional[LogLevel] = None,
        fmt: Optional[str] = None,
    ):
        if level is None or fmt is None:
            from ccbridge.config import get_config
            observability = get_config().observability
            level = level or LogLevel(observability.log_level.get())
            fmt = fmt or observability.log_format.get()

        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"ccbridge.{layer.value}.{name}")
        self._logger.setLevel(getattr(logging, level.value.upper()))

        handler = next(
            (h for h in self._logger.handlers if isinstance(h, StructuredHandler)),
            None,
        )
        if handler is None:
            self._logger.addHandler(StructuredHandler(fmt=fmt))
        else:
            handler.fmt = fmt

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
        error_code: str = "",
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            error_code=error_code,
            duration_ms=duration_ms,
            **context,
        )


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one if unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str, layer: BridgeLayer) -> BridgeLogger:
    """Get a logger for a bridge component."""
    return BridgeLogger(name, layer)


T = TypeVar("T")


def timed_operation(operation_name: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator for timing and logging methods of objects that carry a
    ``_log`` BridgeLogger attribute.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            error_code = ""
            try:
                return func(self, *args, **kwargs)
            except Exception as e:
                success = False
                error_code = getattr(e, "code", type(e).__name__)
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                self._log.operation(operation_name, duration_ms, success, error_code=error_code)
        return wrapper
    return decorator


# =============================================================================
# AUDIT LOGGING
# =============================================================================

@dataclass
class AuditEvent:
    """Audit event for administrative actions."""
    event_id: str
    timestamp: str
    actor: str
    action: str
    resource_type: str
    resource_id: str
    outcome: str  # success, denied
    correlation_id: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def compute_hash(self) -> str:
        data = json.dumps(self.to_dict(), sort_keys=True, default=str)
        return hashlib.sha256(data.encode()).hexdigest()


class AuditLogger:
    """
    Append-only audit log with hash chaining.

    Each entry commits to the hash of its predecessor so that any
    later edit to the trail is detectable by verify_chain().
    """

    GENESIS = "genesis"

    def __init__(self, logger: BridgeLogger):
        self._logger = logger
        self._events: List[Tuple[AuditEvent, str]] = []
        self._lock = threading.Lock()

    def log(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: str,
        outcome: str,
        **details: Any,
    ) -> AuditEvent:
        """Log an audit event."""
        with self._lock:
            previous = self._events[-1][1] if self._events else self.GENESIS
            event = AuditEvent(
                event_id=uuid.uuid4().hex,
                timestamp=datetime.now(timezone.utc).isoformat(),
                actor=actor,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                outcome=outcome,
                correlation_id=get_correlation_id(),
                details=details,
                previous_hash=previous,
            )
            event_hash = event.compute_hash()
            self._events.append((event, event_hash))

        self._logger.info(
            f"AUDIT: {action} on {resource_type}/{resource_id}",
            operation="audit",
            actor=actor,
            outcome=outcome,
            event_hash=event_hash,
        )
        return event

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """Verify the hash chain. Returns (valid, index of first broken entry)."""
        with self._lock:
            previous = self.GENESIS
            for i, (event, recorded_hash) in enumerate(self._events):
                if event.previous_hash != previous or event.compute_hash() != recorded_hash:
                    return (False, i)
                previous = recorded_hash
            return (True, None)

    def events(self, action: Optional[str] = None) -> List[AuditEvent]:
        with self._lock:
            return [e for e, _ in self._events if action is None or e.action == action]
