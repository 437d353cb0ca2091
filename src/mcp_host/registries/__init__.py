"""Tool, resource and prompt definitions and their registries."""

from mcp_host.registries.base import Prompt, PromptArgument, Resource, Tool, ToolArgument
from mcp_host.registries.markers import prompt, resource, tool
from mcp_host.registries.store import PromptRegistry, Registry, ResourceRegistry, ToolRegistry

__all__ = [
    "Prompt",
    "PromptArgument",
    "PromptRegistry",
    "Registry",
    "Resource",
    "ResourceRegistry",
    "Tool",
    "ToolArgument",
    "ToolRegistry",
    "prompt",
    "resource",
    "tool",
]
