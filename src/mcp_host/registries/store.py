"""In-memory registries for tools, resources and prompts.

Each registry is an insertion-ordered map guarded by its own lock, so
concurrent HTTP calls against one server instance never observe a
half-updated map.
"""

from __future__ import annotations

import threading
from typing import Any, Generic, TypeVar

from mcp_host.registries.base import Prompt, Resource, Tool

T = TypeVar("T")


class Registry(Generic[T]):
    """Keyed, insertion-ordered store of definitions.

    Registering an existing key replaces the previous definition.
    """

    key_attribute = "name"

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._items: dict[str, T] = {}
        self._lock = threading.RLock()

    def key_of(self, definition: T) -> str:
        return getattr(definition, self.key_attribute)

    def register(self, definition: T) -> None:
        """Add or replace a definition.

        Args:
            definition: Definition to store under its key.
        """
        key = self.key_of(definition)
        if not key:
            raise ValueError(f"{type(definition).__name__} requires a non-empty {self.key_attribute}")
        with self._lock:
            self._items[key] = definition

    def unregister(self, key: str) -> bool:
        """Remove a definition.

        Returns:
            True if something was removed.
        """
        with self._lock:
            return self._items.pop(key, None) is not None

    def get(self, key: str) -> T | None:
        with self._lock:
            return self._items.get(key)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._items

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def list(self) -> list[T]:
        """Snapshot of all definitions in insertion order."""
        with self._lock:
            return list(self._items.values())

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def to_list(self) -> list[dict[str, Any]]:
        """List all definitions in MCP wire format."""
        return [item.to_dict() for item in self.list()]  # type: ignore[attr-defined]


class ToolRegistry(Registry[Tool]):
    """Tools keyed by name."""

    def get_input_schema(self, name: str) -> dict[str, Any] | None:
        """Get the input schema for a tool.

        Args:
            name: Name of the tool.

        Returns:
            Input schema dict or None if tool not found.
        """
        tool = self.get(name)
        if tool is None:
            return None
        return tool.input_schema()


class ResourceRegistry(Registry[Resource]):
    """Resources keyed by URI."""

    key_attribute = "uri"


class PromptRegistry(Registry[Prompt]):
    """Prompts keyed by name."""
