"""MCP lifecycle management.

Handles the initialize/initialized handshake and capability advertisement.
The HTTP transport is stateless, so the handshake is informational only:
no method is gated on it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

# Supported MCP protocol versions (newest first)
SUPPORTED_PROTOCOL_VERSIONS = ["2025-06-18", "2025-03-26", "2024-11-05"]
# Default version to advertise
MCP_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]


def negotiate_version(requested: Any) -> str:
    """Pick the protocol version to answer with.

    Args:
        requested: Version string sent by the client, if any.

    Returns:
        The requested version when supported, otherwise the newest supported one.
    """
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return MCP_PROTOCOL_VERSION


def default_capabilities() -> dict[str, Any]:
    return {
        "tools": {"listChanged": True},
        "resources": {"subscribe": False, "listChanged": True},
        "prompts": {"listChanged": True},
    }


@dataclass
class LifecycleManager:
    """Tracks handshake details for one server instance.

    Records the most recent client that initialized, which is useful for
    diagnostics on the stdio transport where there is exactly one client.
    """

    capabilities: dict[str, Any] = field(default_factory=default_capabilities)
    client_info: dict[str, Any] | None = None
    client_capabilities: dict[str, Any] | None = None
    initialized: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def connected_client(self) -> dict[str, Any] | None:
        """Get information about the last client that initialized.

        Returns:
            Client info dict with 'name' and 'version', or None.
        """
        return self.client_info

    def handle_initialize(
        self, params: dict[str, Any], server_info: dict[str, Any], instructions: str = ""
    ) -> dict[str, Any]:
        """Handle initialize request.

        Args:
            params: Initialize request parameters.
            server_info: ``{"name", "version"}`` of the answering server.
            instructions: Optional human-readable server description.

        Returns:
            Initialize response result.
        """
        client_info = params.get("clientInfo")
        client_caps = params.get("capabilities")
        with self._lock:
            self.client_info = client_info if isinstance(client_info, dict) else None
            self.client_capabilities = client_caps if isinstance(client_caps, dict) else {}

        result: dict[str, Any] = {
            "protocolVersion": negotiate_version(params.get("protocolVersion")),
            "capabilities": self.capabilities,
            "serverInfo": server_info,
        }
        if instructions:
            result["instructions"] = instructions
        return result

    def handle_initialized(self) -> None:
        """Handle initialized notification."""
        with self._lock:
            self.initialized = True
