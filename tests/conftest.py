"""Pytest configuration and shared fixtures."""

import pytest

from mcp_host.instances import registry
from mcp_host.server import MCPServer


@pytest.fixture(autouse=True)
def clean_registry():
    """Start and finish every test with an empty process-wide registry."""
    registry.clear_all_instances()
    registry.events.clear()
    yield
    registry.clear_all_instances()
    registry.events.clear()


def echo(message: str) -> str:
    """Echoes input.

    Args:
        message: Text to echo back.
    """
    return message


def add(a: int, b: int = 0) -> int:
    """Adds two integers."""
    return a + b


@pytest.fixture
def server() -> MCPServer:
    """Create a server with an echo tool, a resource and a prompt."""
    srv = MCPServer(name="test", description="Test server")
    srv.register_tool(echo)
    srv.register_tool(add)
    srv.register_resource(
        uri="docs://readme",
        name="readme",
        description="Project readme",
        handler=lambda: "# Readme",
    )
    srv.register_prompt(
        name="explain",
        description="Explain a topic",
        args=[{"name": "topic", "required": True}],
        handler=lambda args: [{"role": "user", "content": f"Explain {args['topic']}"}],
    )
    return srv
