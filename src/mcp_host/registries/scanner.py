"""Annotation scanner - discovers marked callables on disk.

Scans Python source files for ``@tool``, ``@resource`` and ``@prompt``
markers, imports the files that carry them and registers every marked
callable through the server's normal registration path.
"""

from __future__ import annotations

import hashlib
import importlib.util
import inspect
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any

from mcp_host.registries.base import Prompt, Resource, Tool, split_docstring
from mcp_host.registries.markers import Marker, get_marker

if TYPE_CHECKING:
    from mcp_host.server import MCPServer

logger = logging.getLogger(__name__)

# A decorator line naming one of the markers, optionally qualified (``@markers.tool(``)
MARKER_PATTERN = re.compile(r"^\s*@(?:[\w.]+\.)?(tool|resource|prompt)\b", re.MULTILINE)

SKIPPED_DIRECTORIES = {"__pycache__", "node_modules", "venv"}


class ScanError(Exception):
    """Raised when a scan target cannot be scanned at all."""

    pass


@dataclass
class ScanResult:
    """Outcome of a scan."""

    tools: list[str] = field(default_factory=list)
    resources: list[str] = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)
    files: list[Path] = field(default_factory=list)
    errors: dict[Path, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.tools) + len(self.resources) + len(self.prompts)

    def merge(self, other: ScanResult) -> None:
        self.tools.extend(other.tools)
        self.resources.extend(other.resources)
        self.prompts.extend(other.prompts)
        self.files.extend(other.files)
        self.errors.update(other.errors)


def is_eligible(path: Path) -> bool:
    """Check whether a file should be scanned.

    Args:
        path: Candidate file.

    Returns:
        True for non-hidden, non-private ``.py`` files whose source contains
        a marker decorator.
    """
    if path.suffix != ".py" or path.name.startswith((".", "_")):
        return False
    try:
        source = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return False
    return MARKER_PATTERN.search(source) is not None


class AnnotationScanner:
    """Registers marked callables found in files or directories.

    Re-scanning the same path re-registers (overwrites) the same names.
    """

    def __init__(self, server: MCPServer) -> None:
        """Initialize the scanner.

        Args:
            server: Server whose registries receive the discovered definitions.
        """
        self._server = server

    def scan(self, path: str | Path) -> ScanResult:
        """Scan a single file or a directory tree.

        Args:
            path: ``.py`` file or directory.

        Returns:
            What was registered, and per-file errors.

        Raises:
            ScanError: If the path does not exist.
        """
        target = Path(path).expanduser()
        if not target.exists():
            raise ScanError(f"Scan path not found: {target}")

        result = ScanResult()
        if target.is_file():
            if is_eligible(target):
                result.merge(self._scan_file(target))
            return result

        for file_path in sorted(target.rglob("*.py")):
            relative = file_path.relative_to(target).parts[:-1]
            if any(part.startswith(".") or part in SKIPPED_DIRECTORIES for part in relative):
                continue
            if is_eligible(file_path):
                result.merge(self._scan_file(file_path))

        logger.info(
            "Scanned %s: %d tools, %d resources, %d prompts registered on %s",
            target,
            len(result.tools),
            len(result.resources),
            len(result.prompts),
            self._server.name,
        )
        return result

    def _scan_file(self, file_path: Path) -> ScanResult:
        result = ScanResult(files=[file_path])
        try:
            module = self._import_module(file_path)
            for func, marker in self._find_marked(module):
                self._register(func, marker, result)
        except Exception as e:
            # Keep scanning the remaining files
            logger.warning("Failed to scan %s: %s", file_path, e)
            result.errors[file_path] = str(e)
        return result

    def _import_module(self, file_path: Path) -> ModuleType:
        """Import a source file under a name unique to its path.

        Raises:
            ScanError: If the file cannot be loaded.
        """
        resolved = file_path.resolve()
        digest = hashlib.sha1(str(resolved).encode()).hexdigest()[:12]
        module_name = f"mcp_host_scanned_{resolved.stem}_{digest}"

        spec = importlib.util.spec_from_file_location(module_name, resolved)
        if spec is None or spec.loader is None:
            raise ScanError(f"Cannot load module from {file_path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(module_name, None)
            raise
        return module

    def _find_marked(self, module: ModuleType) -> list[tuple[Any, Marker]]:
        """Collect marked functions and methods defined in ``module``."""
        found: list[tuple[Any, Marker]] = []
        for _, obj in inspect.getmembers(module):
            if getattr(obj, "__module__", None) != module.__name__:
                continue
            if inspect.isfunction(obj):
                marker = get_marker(obj)
                if marker is not None:
                    found.append((obj, marker))
            elif inspect.isclass(obj):
                found.extend(self._find_marked_methods(obj))
        return found

    def _find_marked_methods(self, cls: type) -> list[tuple[Any, Marker]]:
        marked = [
            (attr, marker)
            for attr, value in vars(cls).items()
            if (marker := get_marker(value)) is not None
        ]
        if not marked:
            return []

        # Methods are bound to a fresh instance; classes need a no-argument constructor
        instance = cls()
        return [(getattr(instance, attr), marker) for attr, marker in marked]

    def _register(self, func: Any, marker: Marker, result: ScanResult) -> None:
        options = marker.options
        meta = dict(options.get("meta") or {})
        summary, _ = split_docstring(inspect.getdoc(func))
        description = options.get("description")
        if description is None:
            description = summary

        if marker.kind == "tool":
            tool = Tool.from_function(
                func, name=options.get("name"), description=description, meta=meta
            )
            self._server.register_tool(tool)
            result.tools.append(tool.name)
        elif marker.kind == "resource":
            resource = Resource(
                uri=options["uri"],
                name=options.get("name") or func.__name__,
                description=description,
                mime_type=options.get("mime_type") or "text/plain",
                handler=func,
                meta=meta,
            )
            self._server.register_resource(resource)
            result.resources.append(resource.uri)
        elif marker.kind == "prompt":
            prompt = Prompt(
                name=options.get("name") or func.__name__,
                description=description,
                arguments=list(options.get("args") or []),
                handler=func,
                meta=meta,
            )
            self._server.register_prompt(prompt)
            result.prompts.append(prompt.name)
