"""Audit logging for MCP server operations.

Provides append-only audit logging in JSON Lines format. The logger
subscribes to the event bus and records every request, response, error and
security denial.
"""

from __future__ import annotations

import json
import re
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mcp_host import events
from mcp_host.events import ErrorEvent, EventBus, RequestEvent, ResponseEvent, SecurityEvent

# Patterns for sensitive argument keys
SENSITIVE_PATTERNS = [
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"auth", re.IGNORECASE),
    re.compile(r"credential", re.IGNORECASE),
    re.compile(r"private[_-]?key", re.IGNORECASE),
]


def _is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    return any(pattern.search(key) for pattern in SENSITIVE_PATTERNS)


def sanitize_arguments(arguments: dict[str, Any]) -> dict[str, Any]:
    """Sanitize arguments by redacting sensitive values.

    Args:
        arguments: Original arguments dictionary.

    Returns:
        New dictionary with sensitive values redacted.
    """
    sanitized = {}
    for key, value in arguments.items():
        if _is_sensitive_key(key):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_arguments(value)
        else:
            sanitized[key] = value
    return sanitized


def _get_timestamp() -> str:
    """Get current UTC timestamp in ISO 8601 format."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class AuditLogger:
    """Append-only audit logger with JSON Lines format.

    All operations are logged with timestamps, and the log file is
    flushed after each write for durability. Writes are serialized so
    concurrent HTTP requests never interleave lines.
    """

    def __init__(self, log_path: Path) -> None:
        """Initialize the audit logger.

        Args:
            log_path: Path to the audit log file.
        """
        self._log_path = log_path
        self._lock = threading.Lock()
        self._bus: EventBus | None = None
        self._ensure_directory()
        self._file = open(log_path, "a", encoding="utf-8")  # noqa: SIM115

    @property
    def log_path(self) -> Path:
        return self._log_path

    def _ensure_directory(self) -> None:
        """Create log directory if it doesn't exist."""
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

    def _write_line(self, data: dict[str, Any]) -> None:
        """Write a JSON line to the log file and flush."""
        line = json.dumps(data, default=str)
        with self._lock:
            if self._file.closed:
                return
            self._file.write(line + "\n")
            self._file.flush()

    def log_request(
        self,
        server: str,
        request_id: Any,
        method: str,
        params: dict[str, Any],
    ) -> None:
        """Log an incoming request.

        Args:
            server: Name of the server instance.
            request_id: JSON-RPC request id.
            method: JSON-RPC method.
            params: Request parameters (will be sanitized).
        """
        self._write_line(
            {
                "type": "request",
                "timestamp": _get_timestamp(),
                "server": server,
                "request_id": request_id,
                "method": method,
                "params": sanitize_arguments(params),
            }
        )

    def log_response(
        self, server: str, request_id: Any, method: str, status: str, duration_ms: float
    ) -> None:
        """Log a response.

        Args:
            server: Name of the server instance.
            request_id: Request identifier to correlate with.
            method: JSON-RPC method.
            status: Result status (success/error).
            duration_ms: Dispatch time in milliseconds.
        """
        self._write_line(
            {
                "type": "response",
                "timestamp": _get_timestamp(),
                "server": server,
                "request_id": request_id,
                "method": method,
                "result_status": status,
                "execution_time_ms": round(duration_ms, 3),
            }
        )

    def log_error(
        self,
        server: str,
        request_id: Any,
        method: str | None,
        code: int,
        message: str,
        duration_ms: float,
    ) -> None:
        """Log an error response with its context."""
        self._write_line(
            {
                "type": "error",
                "timestamp": _get_timestamp(),
                "server": server,
                "request_id": request_id,
                "method": method,
                "code": code,
                "message": message,
                "execution_time_ms": round(duration_ms, 3),
            }
        )

    def log_security_event(self, event_type: str, details: dict[str, Any]) -> None:
        """Log a security-related event.

        Args:
            event_type: Type of security event (body_too_large, unauthorized, etc.).
            details: Additional details about the event.
        """
        self._write_line(
            {
                "type": "security",
                "timestamp": _get_timestamp(),
                "event_type": event_type,
                "details": details,
            }
        )

    def _on_request(self, event: RequestEvent) -> None:
        self.log_request(event.server_name, event.request_id, event.method, event.params)

    def _on_response(self, event: ResponseEvent) -> None:
        status = "success" if event.success else "error"
        self.log_response(
            event.server_name, event.request_id, event.method, status, event.duration_ms
        )

    def _on_error(self, event: ErrorEvent) -> None:
        self.log_error(
            event.server_name,
            event.request_id,
            event.method,
            event.code,
            event.message,
            event.duration_ms,
        )

    def _on_security_denied(self, event: SecurityEvent) -> None:
        self.log_security_event(
            event.reason, {"server": event.server_name, "status": event.status, **event.details}
        )

    def attach(self, bus: EventBus) -> AuditLogger:
        """Subscribe to request, response, error and security events on ``bus``."""
        bus.on(events.REQUEST, self._on_request)
        bus.on(events.RESPONSE, self._on_response)
        bus.on(events.ERROR, self._on_error)
        bus.on(events.SECURITY_DENIED, self._on_security_denied)
        self._bus = bus
        return self

    def detach(self) -> None:
        """Unsubscribe from the bus this logger was attached to."""
        if self._bus is None:
            return
        self._bus.off(events.REQUEST, self._on_request)
        self._bus.off(events.RESPONSE, self._on_response)
        self._bus.off(events.ERROR, self._on_error)
        self._bus.off(events.SECURITY_DENIED, self._on_security_denied)
        self._bus = None

    def close(self) -> None:
        """Detach and close the log file."""
        self.detach()
        with self._lock:
            if self._file and not self._file.closed:
                self._file.close()

    def __enter__(self) -> AuditLogger:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()
