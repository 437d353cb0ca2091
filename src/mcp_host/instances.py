"""Process-wide registry of named server instances.

Each name resolves to exactly one ``MCPServer``. Instances are created on
first use and live until explicitly removed.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from mcp_host import events
from mcp_host.events import EventBus, ServerEvent
from mcp_host.server import DEFAULT_SERVER_NAME, MCPServer

logger = logging.getLogger(__name__)


class ServerRegistry:
    """Named-singleton table of server instances guarded by a lock.

    The registry owns an event bus shared by every instance it creates, so
    a single listener observes lifecycle and request events for all servers.
    """

    def __init__(self, events_bus: EventBus | None = None) -> None:
        self._servers: dict[str, MCPServer] = {}
        self._lock = threading.RLock()
        self._events = events_bus if events_bus is not None else EventBus()

    @property
    def events(self) -> EventBus:
        return self._events

    def get(self, name: str = DEFAULT_SERVER_NAME, **defaults: Any) -> MCPServer:
        """Get the named server, creating it on first use.

        Args:
            name: Server name.
            **defaults: ``description``, ``version`` and ``stats_enabled`` used
                only when the server is created.

        Returns:
            The server instance for ``name``.
        """
        with self._lock:
            server = self._servers.get(name)
            if server is not None:
                return server
            server = MCPServer(name=name, events_bus=self._events, **defaults)
            self._servers[name] = server

        logger.debug("Created MCP server %s", name)
        self._events.fire(events.SERVER_CREATE, ServerEvent(server=server))
        return server

    def find(self, name: str) -> MCPServer | None:
        """Get the named server without creating it."""
        with self._lock:
            return self._servers.get(name)

    def has_instance(self, name: str) -> bool:
        with self._lock:
            return name in self._servers

    def get_instance_names(self) -> list[str]:
        with self._lock:
            return list(self._servers)

    def count(self) -> int:
        with self._lock:
            return len(self._servers)

    def remove_instance(self, name: str) -> bool:
        """Remove a server, firing ``server_remove`` first.

        Returns:
            True if the server existed.
        """
        server = self.find(name)
        if server is None:
            return False

        self._events.fire(events.SERVER_REMOVE, ServerEvent(server=server))
        with self._lock:
            removed = self._servers.pop(name, None) is not None
        if removed:
            logger.debug("Removed MCP server %s", name)
        return removed

    def clear_all_instances(self) -> None:
        """Remove every server. Fires ``server_remove`` for each one."""
        for name in self.get_instance_names():
            self.remove_instance(name)
        logger.debug("All MCP servers cleared")


# Process-wide default registry
registry = ServerRegistry()


def mcp_server(name: str = DEFAULT_SERVER_NAME, **defaults: Any) -> MCPServer:
    """Get or create a server in the process-wide registry."""
    return registry.get(name, **defaults)
