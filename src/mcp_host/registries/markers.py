"""Declarative markers for auto-discovered tools, resources and prompts.

Decorate functions (or methods) in a module, then point the annotation
scanner at the file or its directory:

    from mcp_host.registries.markers import prompt, resource, tool

    @tool(description="Search the knowledge base")
    def search(query: str, limit: int = 10) -> list[str]:
        ...

    @resource(uri="docs://readme", mime_type="text/markdown")
    def readme() -> str:
        ...

    @prompt(args=[{"name": "topic", "required": True}])
    def explain(args: dict) -> list[dict]:
        ...

The decorators only attach metadata; the function is returned unchanged
and stays callable as before.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

MARKER_ATTRIBUTE = "__mcp_marker__"

MarkerKind = Literal["tool", "resource", "prompt"]


@dataclass(frozen=True)
class Marker:
    """Metadata attached to a marked callable."""

    kind: MarkerKind
    options: dict[str, Any] = field(default_factory=dict)


def _mark(kind: MarkerKind, options: dict[str, Any]) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        setattr(func, MARKER_ATTRIBUTE, Marker(kind=kind, options=options))
        return func

    return decorator


def tool(
    func: F | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    **meta: Any,
) -> Any:
    """Mark a callable as a tool. Usable bare (``@tool``) or called."""
    decorator = _mark("tool", {"name": name, "description": description, "meta": meta})
    return decorator(func) if func is not None else decorator


def resource(
    *,
    uri: str,
    name: str | None = None,
    description: str | None = None,
    mime_type: str = "text/plain",
    **meta: Any,
) -> Callable[[F], F]:
    """Mark a zero-argument callable as a resource producer."""
    return _mark(
        "resource",
        {
            "uri": uri,
            "name": name,
            "description": description,
            "mime_type": mime_type,
            "meta": meta,
        },
    )


def prompt(
    func: F | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    args: list[dict[str, Any]] | None = None,
    **meta: Any,
) -> Any:
    """Mark a callable as a prompt template. Usable bare (``@prompt``) or called."""
    decorator = _mark(
        "prompt",
        {"name": name, "description": description, "args": args or [], "meta": meta},
    )
    return decorator(func) if func is not None else decorator


def get_marker(obj: Any) -> Marker | None:
    """Return the marker attached to ``obj``, if any."""
    marker = getattr(obj, MARKER_ATTRIBUTE, None)
    return marker if isinstance(marker, Marker) else None
