"""MCP Server - protocol core.

An ``MCPServer`` is one named, independently configured collection of
tool/resource/prompt registries together with its own security settings
and statistics. ``handle_request`` is the transport-neutral entry point
shared by the HTTP and stdio transports.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mcp_host import events
from mcp_host.events import ErrorEvent, EventBus, RequestEvent, ResponseEvent, SecurityEvent
from mcp_host.protocol.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    JsonRpcError,
    make_error,
    make_response,
    parse_message,
    peek_id,
)
from mcp_host.protocol.lifecycle import LifecycleManager
from mcp_host.registries.base import Prompt, PromptArgument, Resource, Tool
from mcp_host.registries.store import PromptRegistry, ResourceRegistry, ToolRegistry
from mcp_host.security.pipeline import (
    ApiKeyProvider,
    RequestContext,
    SecurityConfig,
    SecurityDenied,
    SecurityPipeline,
)
from mcp_host.security.validator import InputValidator, ValidationError
from mcp_host.stats import StatsTracker

if TYPE_CHECKING:
    from mcp_host.registries.scanner import ScanResult

logger = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "default"
DEFAULT_VERSION = "1.0.0"

# Method name recorded for envelopes that could not be parsed
INVALID_METHOD = "(invalid)"


def _to_text(value: Any) -> str:
    """Render a handler result as text content."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return json.dumps(value, default=str)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class MCPServer:
    """MCP Server implementation.

    Provides:
    - JSON-RPC dispatch for the MCP method set
    - Tool, resource and prompt registries
    - Security settings consumed by the transports
    - Live statistics

    Configuration methods return the server so calls can be chained::

        server = (
            MCPServer("docs")
            .set_description("Documentation search")
            .with_basic_auth("admin", "secret")
            .register_tool(Tool.from_function(search))
        )
    """

    def __init__(
        self,
        name: str = DEFAULT_SERVER_NAME,
        description: str = "",
        version: str = DEFAULT_VERSION,
        stats_enabled: bool = True,
        events_bus: EventBus | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            name: Server name (registry key).
            description: Human-readable description, sent as ``instructions``.
            version: Server version advertised in ``serverInfo``.
            stats_enabled: Whether statistics are recorded.
            events_bus: Event bus to publish on (a private one by default).
        """
        if not name:
            raise ValueError("Server name must not be empty")

        self._name = name
        self._description = description
        self._version = version

        self._tools = ToolRegistry()
        self._resources = ResourceRegistry()
        self._prompts = PromptRegistry()

        self._security = SecurityConfig(realm=f"MCP Server {name}")
        self._pipeline = SecurityPipeline(self._security)
        self._validator = InputValidator()
        self._stats = StatsTracker(enabled=stats_enabled)
        self._lifecycle = LifecycleManager()
        self._events = events_bus if events_bus is not None else EventBus()

        # Method name -> handler; every handler takes the params dict
        self._routes: dict[str, Callable[[dict[str, Any]], Any]] = {
            "initialize": self._handle_initialize,
            "notifications/initialized": self._handle_initialized,
            "ping": self._handle_ping,
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
            "resources/list": self._handle_resources_list,
            "resources/read": self._handle_resources_read,
            "prompts/list": self._handle_prompts_list,
            "prompts/get": self._handle_prompts_get,
        }

    def __repr__(self) -> str:
        return f"MCPServer(name={self._name!r}, tools={self._tools.count()})"

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def version(self) -> str:
        return self._version

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def security(self) -> SecurityConfig:
        return self._security

    @property
    def pipeline(self) -> SecurityPipeline:
        return self._pipeline

    @property
    def stats(self) -> StatsTracker:
        return self._stats

    @property
    def lifecycle(self) -> LifecycleManager:
        return self._lifecycle

    @property
    def methods(self) -> list[str]:
        """Method names understood by the dispatcher."""
        return list(self._routes)

    def get_server_name(self) -> str:
        return self._name

    def get_description(self) -> str:
        return self._description

    def get_version(self) -> str:
        return self._version

    def set_description(self, description: str) -> MCPServer:
        self._description = description
        return self

    def set_version(self, version: str) -> MCPServer:
        self._version = version
        return self

    def get_server_info(self) -> dict[str, Any]:
        return {"name": self._name, "version": self._version}

    def get_capabilities(self) -> dict[str, Any]:
        return self._lifecycle.capabilities

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def register_tool(self, tool: Tool | Callable[..., Any], **overrides: Any) -> MCPServer:
        """Register a tool, replacing any tool with the same name.

        Args:
            tool: A Tool, or a plain function converted with ``Tool.from_function``.
            **overrides: ``name``/``description``/``meta`` passed to
                ``Tool.from_function`` when ``tool`` is a function.
        """
        if not isinstance(tool, Tool):
            tool = Tool.from_function(tool, **overrides)
        self._tools.register(tool)
        logger.debug("Registered tool %s on server %s", tool.name, self._name)
        return self

    def register_tools(self, tools: Iterable[Tool | Callable[..., Any]]) -> MCPServer:
        for tool in tools:
            self.register_tool(tool)
        return self

    def unregister_tool(self, name: str) -> bool:
        return self._tools.unregister(name)

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        return self._tools.has(name)

    def get_tool_count(self) -> int:
        return self._tools.count()

    def clear_tools(self) -> MCPServer:
        self._tools.clear()
        return self

    def list_tools(self) -> list[dict[str, Any]]:
        """List all registered tools in MCP format."""
        return self._tools.to_list()

    def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invoke a tool and wrap its result as MCP text content.

        Args:
            name: Tool name.
            arguments: Call arguments.

        Returns:
            ``{"content": [{"type": "text", "text": ...}], "isError": False}``

        Raises:
            JsonRpcError: Unknown tool, invalid arguments, or handler failure.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise JsonRpcError(METHOD_NOT_FOUND, f"Tool not found: {name}")

        arguments = {} if arguments is None else arguments
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "Tool arguments must be an object")

        try:
            self._validator.validate_tool_input(name, tool.input_schema(), arguments)
        except ValidationError as e:
            raise JsonRpcError(INVALID_PARAMS, str(e)) from e

        start = time.perf_counter()
        try:
            result = tool.invoke(arguments)
        except JsonRpcError:
            self._stats.record_tool_invocation(name, _elapsed_ms(start), success=False)
            raise
        except Exception as e:
            self._stats.record_tool_invocation(name, _elapsed_ms(start), success=False)
            logger.warning("Tool %s on server %s failed: %s", name, self._name, e, exc_info=True)
            raise JsonRpcError(INTERNAL_ERROR, f"Tool execution failed: {e}") from e

        self._stats.record_tool_invocation(name, _elapsed_ms(start))
        return {
            "content": [{"type": "text", "text": _to_text(result)}],
            "isError": False,
        }

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def register_resource(
        self,
        resource: Resource | None = None,
        *,
        uri: str | None = None,
        name: str | None = None,
        description: str = "",
        mime_type: str = "text/plain",
        handler: Callable[[], Any] | None = None,
    ) -> MCPServer:
        """Register a resource, replacing any resource with the same URI.

        Accepts either a ``Resource`` or its fields as keywords.
        """
        if resource is None:
            if not uri or handler is None:
                raise ValueError("register_resource requires a uri and a handler")
            resource = Resource(
                uri=uri,
                name=name or uri,
                description=description,
                mime_type=mime_type,
                handler=handler,
            )
        self._resources.register(resource)
        return self

    def unregister_resource(self, uri: str) -> bool:
        return self._resources.unregister(uri)

    def get_resource(self, uri: str) -> Resource | None:
        return self._resources.get(uri)

    def has_resource(self, uri: str) -> bool:
        return self._resources.has(uri)

    def get_resource_count(self) -> int:
        return self._resources.count()

    def clear_resources(self) -> MCPServer:
        self._resources.clear()
        return self

    def list_resources(self) -> list[dict[str, Any]]:
        return self._resources.to_list()

    def read_resource(self, uri: str) -> dict[str, Any]:
        """Produce the current content of a resource.

        Raises:
            JsonRpcError: Unknown URI or handler failure.
        """
        resource = self._resources.get(uri)
        if resource is None:
            raise JsonRpcError(METHOD_NOT_FOUND, f"Resource not found: {uri}")

        try:
            content = resource.read()
        except JsonRpcError:
            raise
        except Exception as e:
            logger.warning("Resource %s on server %s failed: %s", uri, self._name, e, exc_info=True)
            raise JsonRpcError(INTERNAL_ERROR, f"Resource read failed: {e}") from e

        self._stats.record_resource_read(uri)

        item: dict[str, Any] = {"uri": uri, "mimeType": resource.mime_type}
        if isinstance(content, bytes) and not resource.mime_type.startswith("text/"):
            item["blob"] = base64.b64encode(content).decode("ascii")
        else:
            item["text"] = _to_text(content)
        return {"contents": [item]}

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def register_prompt(
        self,
        prompt: Prompt | None = None,
        *,
        name: str | None = None,
        description: str = "",
        args: list[PromptArgument | dict[str, Any] | str] | None = None,
        handler: Callable[[dict[str, Any]], Any] | None = None,
    ) -> MCPServer:
        """Register a prompt, replacing any prompt with the same name.

        Accepts either a ``Prompt`` or its fields as keywords.
        """
        if prompt is None:
            if not name or handler is None:
                raise ValueError("register_prompt requires a name and a handler")
            prompt = Prompt(
                name=name,
                description=description,
                arguments=list(args or []),
                handler=handler,
            )
        self._prompts.register(prompt)
        return self

    def unregister_prompt(self, name: str) -> bool:
        return self._prompts.unregister(name)

    def get_prompt_definition(self, name: str) -> Prompt | None:
        return self._prompts.get(name)

    def has_prompt(self, name: str) -> bool:
        return self._prompts.has(name)

    def get_prompt_count(self) -> int:
        return self._prompts.count()

    def clear_prompts(self) -> MCPServer:
        self._prompts.clear()
        return self

    def list_prompts(self) -> list[dict[str, Any]]:
        return self._prompts.to_list()

    def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Render a prompt into MCP messages.

        Raises:
            JsonRpcError: Unknown prompt, missing required arguments, or
                handler failure.
        """
        prompt = self._prompts.get(name)
        if prompt is None:
            raise JsonRpcError(METHOD_NOT_FOUND, f"Prompt not found: {name}")

        arguments = {} if arguments is None else arguments
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "Prompt arguments must be an object")

        missing = prompt.missing_arguments(arguments)
        if missing:
            raise JsonRpcError(
                INVALID_PARAMS, f"Missing required arguments: {', '.join(missing)}"
            )

        try:
            rendered = prompt.render(arguments)
        except JsonRpcError:
            raise
        except Exception as e:
            logger.warning("Prompt %s on server %s failed: %s", name, self._name, e, exc_info=True)
            raise JsonRpcError(INTERNAL_ERROR, f"Prompt generation failed: {e}") from e

        if isinstance(rendered, str | dict):
            rendered = [rendered]
        if not isinstance(rendered, list | tuple):
            raise JsonRpcError(
                INTERNAL_ERROR,
                f"Prompt generation failed: handler returned {type(rendered).__name__}",
            )
        messages = [self._format_message(message) for message in rendered]

        self._stats.record_prompt_generation(name)
        return {"description": prompt.description, "messages": messages}

    @staticmethod
    def _format_message(message: Any) -> dict[str, Any]:
        if isinstance(message, str):
            return {"role": "user", "content": {"type": "text", "text": message}}
        if not isinstance(message, dict):
            raise JsonRpcError(INTERNAL_ERROR, "Prompt handler returned an invalid message")

        content = message.get("content", "")
        if not (isinstance(content, dict) and "type" in content):
            content = {"type": "text", "text": _to_text(content)}
        return {"role": message.get("role", "user"), "content": content}

    # ------------------------------------------------------------------
    # Security configuration
    # ------------------------------------------------------------------

    def with_cors(self, origins: Iterable[str] | str) -> MCPServer:
        """Set allowed CORS origins (exact, ``*`` or ``*.domain`` patterns)."""
        self._security.set_cors(origins)
        return self

    def get_cors_allowed_origins(self) -> list[str]:
        return list(self._security.cors_allowed_origins)

    def is_cors_allowed(self, origin: str) -> bool:
        return self._security.is_cors_allowed(origin)

    def with_basic_auth(self, username: str, password: str) -> MCPServer:
        self._security.basic_auth_username = username
        self._security.basic_auth_password = password
        return self

    def has_basic_auth(self) -> bool:
        return self._security.has_basic_auth

    def get_basic_auth_username(self) -> str | None:
        return self._security.basic_auth_username

    def verify_basic_auth(self, header: str | None) -> bool:
        return self._security.verify_basic_auth(header)

    def with_body_limit(self, max_bytes: int) -> MCPServer:
        """Set the maximum request body size in bytes (0 = unlimited)."""
        if max_bytes < 0:
            raise ValueError("Body limit must be >= 0")
        self._security.max_request_body_size = max_bytes
        return self

    def get_max_request_body_size(self) -> int:
        return self._security.max_request_body_size

    def with_api_key_provider(self, provider: ApiKeyProvider) -> MCPServer:
        """Install a ``provider(key, context) -> bool`` API-key check."""
        self._security.api_key_provider = provider
        return self

    def has_api_key_provider(self) -> bool:
        return self._security.api_key_provider is not None

    def verify_api_key(self, key: str, context: RequestContext | dict[str, Any] | None = None) -> bool:
        if not isinstance(context, RequestContext):
            fields = RequestContext.__dataclass_fields__
            context = RequestContext(**{k: v for k, v in (context or {}).items() if k in fields})
        return self._security.verify_api_key(key, context)

    def with_max_string_length(self, max_length: int | None) -> MCPServer:
        """Cap the length of string tool arguments (None disables the cap)."""
        self._validator = InputValidator(max_string_length=max_length)
        return self

    def authorize(self, context: RequestContext) -> None:
        """Run the security pipeline for an inbound request.

        Raises:
            SecurityDenied: When a check fails. A ``security_denied`` event is
                fired before the exception propagates.
        """
        context.server_name = self._name
        try:
            self._pipeline.enforce(context)
        except SecurityDenied as e:
            logger.info("Denied %s request to server %s: %s", context.transport, self._name, e.reason)
            self._events.fire(
                events.SECURITY_DENIED,
                SecurityEvent(
                    server_name=self._name,
                    reason=e.reason,
                    status=e.status,
                    details={"transport": context.transport, "client": context.client},
                ),
            )
            raise

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def enable_stats(self) -> MCPServer:
        self._stats.enable()
        return self

    def disable_stats(self) -> MCPServer:
        self._stats.disable()
        return self

    def is_stats_enabled(self) -> bool:
        return self._stats.enabled

    def reset_stats(self) -> MCPServer:
        self._stats.reset()
        return self

    def get_stats(self) -> dict[str, Any]:
        return self._stats.get_stats()

    def get_stats_summary(self) -> dict[str, Any]:
        return self._stats.get_stats_summary()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def scan(self, path: str | Path) -> ScanResult:
        """Register every marked tool, resource and prompt found under ``path``."""
        from mcp_host.registries.scanner import AnnotationScanner

        return AnnotationScanner(self).scan(path)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle_request(
        self,
        raw: str | bytes | dict[str, Any],
        context: RequestContext | None = None,
    ) -> dict[str, Any]:
        """Handle one JSON-RPC request.

        Never raises: every outcome is a response envelope.

        Args:
            raw: JSON text/bytes or a pre-parsed request dictionary.
            context: Request context from the transport, passed to listeners.

        Returns:
            JSON-RPC response envelope.
        """
        start = time.perf_counter()

        try:
            request = parse_message(raw)
        except JsonRpcError as e:
            response = make_error(peek_id(raw), e.code, e.message, e.data)
            return self._complete(INVALID_METHOD, response["id"], response, start, context, e)

        method = request.method
        before = RequestEvent(
            server_name=self._name,
            method=method,
            request_id=request.id,
            params=request.params,
            context=context,
        )
        self._events.fire(events.REQUEST, before)
        if before.rejected:
            response = make_error(request.id, before.reject_code, before.reject_message)
            return self._complete(method, request.id, response, start, context)

        handler = self._routes.get(method)
        if handler is None:
            response = make_error(request.id, METHOD_NOT_FOUND, f"Method not found: {method}")
            return self._complete(method, request.id, response, start, context)

        exception: BaseException | None = None
        try:
            response = make_response(request.id, handler(request.params))
        except JsonRpcError as e:
            exception = e.__cause__ or e
            response = make_error(request.id, e.code, e.message, e.data)
        except Exception as e:
            # Route handlers convert handler failures themselves; this is a last resort
            logger.exception("Unhandled error dispatching %s on server %s", method, self._name)
            exception = e
            response = make_error(request.id, INTERNAL_ERROR, f"Internal error: {e}")

        return self._complete(method, request.id, response, start, context, exception)

    def _complete(
        self,
        method: str,
        request_id: int | str | None,
        response: dict[str, Any],
        start: float,
        context: RequestContext | None,
        exception: BaseException | None = None,
    ) -> dict[str, Any]:
        """Record statistics and fire post-dispatch events for a finished request."""
        duration_ms = _elapsed_ms(start)
        error = response.get("error")
        success = error is None

        self._stats.record_request(
            method, duration_ms, success, None if success else error["code"]
        )
        if not success:
            self._stats.record_error(error["code"], error["message"], method)
            self._events.fire(
                events.ERROR,
                ErrorEvent(
                    server_name=self._name,
                    method=method,
                    request_id=request_id,
                    code=error["code"],
                    message=error["message"],
                    duration_ms=duration_ms,
                    exception=exception,
                    context=context,
                ),
            )

        self._events.fire(
            events.RESPONSE,
            ResponseEvent(
                server_name=self._name,
                method=method,
                request_id=request_id,
                response=response,
                duration_ms=duration_ms,
                context=context,
            ),
        )
        return response

    def _handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._lifecycle.handle_initialize(
            params, self.get_server_info(), instructions=self._description
        )

    def _handle_initialized(self, params: dict[str, Any]) -> dict[str, Any]:
        self._lifecycle.handle_initialized()
        return {}

    def _handle_ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    def _handle_tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": self.list_tools()}

    def _handle_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise JsonRpcError(INVALID_PARAMS, "Missing required parameter: name")
        return self.call_tool(name, params.get("arguments"))

    def _handle_resources_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"resources": self.list_resources()}

    def _handle_resources_read(self, params: dict[str, Any]) -> dict[str, Any]:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise JsonRpcError(INVALID_PARAMS, "Missing required parameter: uri")
        return self.read_resource(uri)

    def _handle_prompts_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"prompts": self.list_prompts()}

    def _handle_prompts_get(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise JsonRpcError(INVALID_PARAMS, "Missing required parameter: name")
        return self.get_prompt(name, params.get("arguments"))
