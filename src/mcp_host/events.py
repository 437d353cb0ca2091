"""Lifecycle and request event hooks.

Listeners are plain callables receiving a single payload object. A
``request`` listener may veto the call with ``event.reject(...)``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from mcp_host.protocol.jsonrpc import SERVER_ERROR

if TYPE_CHECKING:
    from mcp_host.server import MCPServer

logger = logging.getLogger(__name__)

SERVER_CREATE = "server_create"
SERVER_REMOVE = "server_remove"
REQUEST = "request"
RESPONSE = "response"
ERROR = "error"
SECURITY_DENIED = "security_denied"

EVENTS = frozenset({SERVER_CREATE, SERVER_REMOVE, REQUEST, RESPONSE, ERROR, SECURITY_DENIED})

Listener = Callable[[Any], None]


@dataclass
class ServerEvent:
    """Fired when a server instance is created or about to be removed."""

    server: MCPServer

    @property
    def server_name(self) -> str:
        return self.server.name


@dataclass
class RequestEvent:
    """Fired before a request is routed."""

    server_name: str
    method: str
    request_id: int | str | None
    params: dict[str, Any]
    context: Any = None
    rejected: bool = False
    reject_message: str = "Request rejected"
    reject_code: int = SERVER_ERROR

    def reject(self, message: str = "Request rejected", code: int = SERVER_ERROR) -> None:
        """Short-circuit the request with an error response."""
        self.rejected = True
        self.reject_message = message
        self.reject_code = code


@dataclass
class ResponseEvent:
    """Fired after a response envelope has been built."""

    server_name: str
    method: str
    request_id: int | str | None
    response: dict[str, Any]
    duration_ms: float
    context: Any = None

    @property
    def success(self) -> bool:
        return "error" not in self.response


@dataclass
class ErrorEvent:
    """Fired for every error response, with full context for logging or alerting."""

    server_name: str
    method: str | None
    request_id: int | str | None
    code: int
    message: str
    duration_ms: float
    exception: BaseException | None = None
    context: Any = None


@dataclass
class SecurityEvent:
    """Fired when the security pipeline denies a request."""

    server_name: str
    reason: str
    status: int
    details: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Synchronous publish/subscribe hub.

    Listener failures are logged and never propagate into dispatch.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._lock = threading.Lock()

    def on(self, event: str, listener: Listener) -> Listener:
        """Subscribe a listener.

        Args:
            event: Event name (one of ``EVENTS``).
            listener: Callable receiving the event payload.

        Returns:
            The listener, so this can be used as a decorator factory target.

        Raises:
            ValueError: If the event name is unknown.
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> bool:
        """Unsubscribe a listener. Returns True if it was subscribed."""
        with self._lock:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)
                return True
            return False

    def has_listeners(self, event: str) -> bool:
        with self._lock:
            return bool(self._listeners.get(event))

    def fire(self, event: str, payload: Any) -> None:
        """Deliver a payload to every listener of ``event`` in subscription order."""
        with self._lock:
            listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for %r event failed", event)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()
