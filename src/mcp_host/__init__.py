"""MCP Host - named MCP servers over HTTP and stdio."""

__version__ = "1.0.0"

from mcp_host.events import EventBus  # noqa: E402
from mcp_host.instances import ServerRegistry, mcp_server, registry  # noqa: E402
from mcp_host.registries import (  # noqa: E402
    Prompt,
    PromptArgument,
    Resource,
    Tool,
    ToolArgument,
    prompt,
    resource,
    tool,
)
from mcp_host.server import MCPServer  # noqa: E402

__all__ = [
    "EventBus",
    "MCPServer",
    "Prompt",
    "PromptArgument",
    "Resource",
    "ServerRegistry",
    "Tool",
    "ToolArgument",
    "__version__",
    "mcp_server",
    "prompt",
    "registry",
    "resource",
    "tool",
]
