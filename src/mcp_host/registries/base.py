"""Tool, resource and prompt definitions.

Definitions are the single registration currency of the server: manual
registration and the annotation scanner both build these objects.
"""

from __future__ import annotations

import inspect
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, get_origin

# Python annotation -> JSON schema type
_TYPE_NAMES: dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    dict: "object",
}

_STRING_TYPE_NAMES = {
    "str": "string",
    "int": "integer",
    "float": "number",
    "bool": "boolean",
    "list": "array",
    "dict": "object",
}

ANY_TYPE = "any"

_ARGS_HEADER = re.compile(r"^\s*(Args|Arguments|Parameters):\s*$")
_ARG_LINE = re.compile(r"^\s+(\*{0,2}\w+)(?:\s*\([^)]*\))?:\s*(.*)$")
_SECTION_HEADER = re.compile(r"^\s*[A-Z][A-Za-z ]*:\s*$")


def json_type_for(annotation: Any) -> str:
    """Map a Python annotation to a JSON schema type name.

    Args:
        annotation: Annotation object or string (postponed annotations).

    Returns:
        JSON schema type name, or ``"any"`` when there is no clear mapping.
    """
    if annotation is inspect.Parameter.empty:
        return ANY_TYPE

    if isinstance(annotation, str):
        base = annotation.split("[", 1)[0].split("|", 1)[0].strip()
        return _STRING_TYPE_NAMES.get(base, ANY_TYPE)

    origin = get_origin(annotation)
    if origin is not None and origin in _TYPE_NAMES:
        return _TYPE_NAMES[origin]

    return _TYPE_NAMES.get(annotation, ANY_TYPE)


def accepts_extra_keywords(func: Callable[..., Any]) -> bool:
    """Return True when the callable takes a ``**kwargs`` parameter."""
    try:
        parameters = inspect.signature(func).parameters.values()
    except (TypeError, ValueError):
        return True
    return any(param.kind is param.VAR_KEYWORD for param in parameters)


def split_docstring(doc: str | None) -> tuple[str, dict[str, str]]:
    """Split a Google-style docstring into a summary and argument docs.

    Args:
        doc: Cleaned docstring (as returned by ``inspect.getdoc``).

    Returns:
        Tuple of (summary paragraph, mapping of argument name to description).
    """
    if not doc:
        return "", {}

    lines = doc.splitlines()
    summary_lines: list[str] = []
    for line in lines:
        if not line.strip():
            break
        summary_lines.append(line.strip())

    arg_docs: dict[str, str] = {}
    in_args = False
    current: str | None = None
    for line in lines:
        if _ARGS_HEADER.match(line):
            in_args = True
            continue
        if not in_args:
            continue
        if _SECTION_HEADER.match(line) and not line.startswith((" ", "\t")):
            break
        match = _ARG_LINE.match(line)
        if match and len(line) - len(line.lstrip()) <= 4:
            current = match.group(1).lstrip("*")
            arg_docs[current] = match.group(2).strip()
        elif current and line.strip():
            arg_docs[current] = f"{arg_docs[current]} {line.strip()}".strip()

    return " ".join(summary_lines), arg_docs


@dataclass
class ToolArgument:
    """Descriptor of a single tool argument."""

    name: str
    type: str = ANY_TYPE
    required: bool = True
    description: str = ""

    def to_schema(self) -> dict[str, Any]:
        """Convert to a JSON schema property."""
        schema: dict[str, Any] = {}
        if self.type != ANY_TYPE:
            schema["type"] = self.type
        if self.description:
            schema["description"] = self.description
        return schema


@dataclass
class Tool:
    """A named callable exposed to clients.

    The handler is invoked with the call arguments as keyword arguments.
    """

    name: str
    description: str
    handler: Callable[..., Any]
    arguments: list[ToolArgument] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_function(
        cls,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Tool:
        """Build a tool from a plain function or bound method.

        Argument descriptors come from the signature: annotations give the
        type, parameters without defaults are required, and descriptions are
        read from the ``Args:`` section of the docstring.

        Args:
            func: The handler.
            name: Tool name (defaults to the function name).
            description: Tool description (defaults to the docstring summary).
            meta: Extra metadata published under ``_meta``.

        Returns:
            A new Tool.
        """
        summary, arg_docs = split_docstring(inspect.getdoc(func))
        arguments = []
        for param in inspect.signature(func).parameters.values():
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            arguments.append(
                ToolArgument(
                    name=param.name,
                    type=json_type_for(param.annotation),
                    required=param.default is inspect.Parameter.empty,
                    description=arg_docs.get(param.name, ""),
                )
            )

        return cls(
            name=name or func.__name__,
            description=description if description is not None else summary,
            handler=func,
            arguments=arguments,
            meta=dict(meta or {}),
        )

    def get_argument(self, name: str) -> ToolArgument | None:
        """Find an argument descriptor by name."""
        for argument in self.arguments:
            if argument.name == name:
                return argument
        return None

    def describe_arg(self, name: str, description: str) -> Tool:
        """Set the description of an argument, adding it if unknown.

        Returns:
            The tool, for chaining.
        """
        argument = self.get_argument(name)
        if argument is None:
            self.arguments.append(ToolArgument(name=name, description=description))
        else:
            argument.description = description
        return self

    def input_schema(self) -> dict[str, Any]:
        """Derive the JSON schema for the tool input.

        Computed on every call so later edits to descriptors are reflected.
        """
        schema: dict[str, Any] = {
            "type": "object",
            "properties": {arg.name: arg.to_schema() for arg in self.arguments},
        }
        required = [arg.name for arg in self.arguments if arg.required]
        if required:
            schema["required"] = required
        if not accepts_extra_keywords(self.handler):
            schema["additionalProperties"] = False
        return schema

    def invoke(self, arguments: dict[str, Any]) -> Any:
        """Call the handler with the given arguments."""
        return self.handler(**arguments)

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP tool format.

        Returns:
            Dictionary in MCP tools/list format.
        """
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }
        if self.meta:
            data["_meta"] = dict(self.meta)
        return data


@dataclass
class Resource:
    """A URI-addressable, read-only data source.

    Content is produced by calling the handler on every read.
    """

    uri: str
    name: str
    handler: Callable[[], Any]
    description: str = ""
    mime_type: str = "text/plain"
    meta: dict[str, Any] = field(default_factory=dict)

    def read(self) -> Any:
        """Produce the current content."""
        return self.handler()

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP resources/list format."""
        data: dict[str, Any] = {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }
        if self.meta:
            data["_meta"] = dict(self.meta)
        return data


@dataclass
class PromptArgument:
    """Descriptor of a prompt template argument."""

    name: str
    description: str = ""
    required: bool = False

    @classmethod
    def from_value(cls, value: PromptArgument | dict[str, Any] | str) -> PromptArgument:
        """Coerce a dict or bare name into a PromptArgument."""
        if isinstance(value, PromptArgument):
            return value
        if isinstance(value, str):
            return cls(name=value)
        return cls(
            name=value["name"],
            description=value.get("description", ""),
            required=bool(value.get("required", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "required": self.required,
        }


@dataclass
class Prompt:
    """A parameterized template producing a list of role/content messages.

    The handler receives the argument mapping and returns a list of
    ``{"role": ..., "content": ...}`` dictionaries.
    """

    name: str
    handler: Callable[[dict[str, Any]], list[dict[str, Any]]]
    description: str = ""
    arguments: list[PromptArgument] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.arguments = [PromptArgument.from_value(arg) for arg in self.arguments]

    def missing_arguments(self, supplied: dict[str, Any]) -> list[str]:
        """Names of required arguments absent from ``supplied``."""
        return [
            arg.name for arg in self.arguments if arg.required and supplied.get(arg.name) is None
        ]

    def render(self, arguments: dict[str, Any]) -> list[dict[str, Any]]:
        """Run the template."""
        return self.handler(arguments)

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP prompts/list format."""
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "arguments": [arg.to_dict() for arg in self.arguments],
        }
        if self.meta:
            data["_meta"] = dict(self.meta)
        return data
