"""HTTP transport for MCP servers.

``RequestProcessor`` holds the transport logic (server resolution, the
security pipeline, verb handling and response headers) independent of any
web framework. ``create_app`` wraps it in a Starlette application that
uvicorn can serve.

Routes::

    /mcp            -> server from ``?server=`` or ``default``
    /mcp/{server}   -> named server
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from mcp_host.instances import ServerRegistry
from mcp_host.instances import registry as default_registry
from mcp_host.protocol.jsonrpc import (
    SERVER_ERROR,
    encode,
    format_error,
    make_error,
    preparse,
)
from mcp_host.security.pipeline import (
    HTTP_TRANSPORT,
    RequestContext,
    SecurityDenied,
    security_headers,
)
from mcp_host.server import DEFAULT_SERVER_NAME

logger = logging.getLogger(__name__)

DEFAULT_PATH = "/mcp"
JSON_CONTENT_TYPE = "application/json"

# Verbs routed to the processor; anything it does not serve gets a 405 from it
ROUTED_METHODS = ["GET", "POST", "OPTIONS", "PUT", "PATCH", "DELETE"]


@dataclass
class HttpResponse:
    """Framework-neutral HTTP response."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


class RequestProcessor:
    """Turns one HTTP exchange into exactly one HTTP response."""

    def __init__(
        self,
        registry: ServerRegistry | None = None,
        default_server: str = DEFAULT_SERVER_NAME,
    ) -> None:
        """Initialize the processor.

        Args:
            registry: Server registry to resolve names against
                (the process-wide registry by default).
            default_server: Name used when the request does not name a server.
        """
        self._registry = registry if registry is not None else default_registry
        self._default_server = default_server

    @property
    def registry(self) -> ServerRegistry:
        return self._registry

    @property
    def default_server(self) -> str:
        return self._default_server

    def process(
        self,
        http_method: str,
        server_name: str | None,
        body: str | bytes = b"",
        headers: dict[str, str] | None = None,
        scheme: str = "http",
        client: str | None = None,
    ) -> HttpResponse:
        """Handle one HTTP request.

        Args:
            http_method: HTTP verb.
            server_name: Server named by the path or query, if any.
            body: Raw request body.
            headers: Request headers.
            scheme: URL scheme the request arrived on.
            client: Remote address, for diagnostics.

        Returns:
            The response to send.
        """
        http_method = http_method.upper()
        name = server_name or self._default_server
        context = RequestContext(
            transport=HTTP_TRANSPORT,
            method=http_method,
            headers=dict(headers or {}),
            body=body,
            scheme=scheme,
            server_name=name,
            client=client,
        )
        base_headers = security_headers(context)

        server = self._registry.find(name)
        if server is None:
            logger.info("Request for unknown server %s from %s", name, client)
            return self._json(
                400, format_error(None, SERVER_ERROR, f"Unknown server: {name}"), base_headers
            )

        response_headers = {**base_headers, **server.pipeline.cors_headers(context)}

        if http_method == "OPTIONS":
            return HttpResponse(status=204, headers=response_headers)

        if http_method not in ("GET", "POST"):
            response_headers["Allow"] = "POST, GET, OPTIONS"
            return self._json(
                405,
                format_error(None, SERVER_ERROR, f"Method not allowed: {http_method}"),
                response_headers,
            )

        try:
            server.authorize(context)
        except SecurityDenied as e:
            return self._json(
                e.status,
                format_error(None, SERVER_ERROR, e.message),
                {**response_headers, **e.headers},
            )

        if http_method == "GET":
            discovery = {"jsonrpc": "2.0", "id": None, "method": "initialize", "params": {}}
            envelope = server.handle_request(discovery, context=context)
            return self._json(200, encode(envelope), response_headers)

        payload, request = preparse(body)
        envelope = server.handle_request(payload, context=context)
        if request is not None and request.is_notification:
            return HttpResponse(status=202, headers=response_headers)
        return self._json(200, encode(envelope), response_headers)

    @staticmethod
    def _json(status: int, body: str, headers: dict[str, str]) -> HttpResponse:
        return HttpResponse(
            status=status,
            headers={**headers, "Content-Type": JSON_CONTENT_TYPE},
            body=body,
        )


def create_app(
    processor: RequestProcessor | None = None,
    path: str = DEFAULT_PATH,
) -> Starlette:
    """Create the Starlette application serving MCP over HTTP.

    Args:
        processor: Request processor (one over the process-wide registry by default).
        path: Mount path for the MCP endpoint.

    Returns:
        Starlette application.
    """
    processor = processor if processor is not None else RequestProcessor()
    path = "/" + path.strip("/")

    async def handle(request: Request) -> Response:
        body = await request.body()
        server_name = request.path_params.get("server") or request.query_params.get("server")
        client = request.client.host if request.client else None
        try:
            result = await run_in_threadpool(
                processor.process,
                request.method,
                server_name,
                body,
                dict(request.headers),
                request.url.scheme,
                client,
            )
        except Exception:
            # process() converts every protocol failure itself
            logger.exception("Unhandled error processing %s %s", request.method, request.url.path)
            envelope = make_error(None, SERVER_ERROR, "Internal server error")
            return Response(
                encode(envelope),
                status_code=500,
                headers=security_headers(),
                media_type=JSON_CONTENT_TYPE,
            )
        return Response(result.body, status_code=result.status, headers=result.headers)

    routes = [
        Route(path, handle, methods=ROUTED_METHODS),
        Route(path + "/{server}", handle, methods=ROUTED_METHODS),
    ]
    app = Starlette(routes=routes)
    app.state.processor = processor
    return app


def run_http(
    app: Starlette,
    host: str = "127.0.0.1",
    port: int = 8080,
    log_level: str = "info",
) -> None:
    """Serve ``app`` with uvicorn until interrupted."""
    logger.info("Starting MCP HTTP server on %s:%s", host, port)
    config = uvicorn.Config(app, host=host, port=port, log_level=log_level, access_log=False)
    server = uvicorn.Server(config)
    server.run()
