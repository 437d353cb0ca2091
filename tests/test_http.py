"""Tests for the HTTP transport."""

import base64
import json

import pytest
from starlette.testclient import TestClient

from mcp_host import events
from mcp_host.instances import ServerRegistry
from mcp_host.protocol.http import RequestProcessor, create_app
from mcp_host.server import MCPServer


def echo(message: str) -> str:
    """Echoes input."""
    return message


def rpc(method: str, params: dict | None = None, msg_id: int | None = 1) -> str:
    request = {"jsonrpc": "2.0", "method": method, "params": params or {}}
    if msg_id is not None:
        request["id"] = msg_id
    return json.dumps(request)


@pytest.fixture
def servers() -> ServerRegistry:
    """Create a registry holding a 'default' and a 'docs' server."""
    registry = ServerRegistry()
    registry.get("default").register_tool(echo)
    registry.get("docs", description="Documentation").register_tool(echo)
    return registry


@pytest.fixture
def docs(servers: ServerRegistry) -> MCPServer:
    return servers.find("docs")


@pytest.fixture
def client(servers: ServerRegistry) -> TestClient:
    return TestClient(create_app(RequestProcessor(servers)))


class TestRouting:
    """Tests for server resolution."""

    def test_named_server_in_path(self, client: TestClient):
        """Should dispatch to the server named in the path."""
        response = client.post("/mcp/docs", content=rpc("initialize"))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()["result"]["serverInfo"]["name"] == "docs"

    def test_default_server(self, client: TestClient):
        """Should use the default server without a name."""
        response = client.post("/mcp", content=rpc("initialize"))

        assert response.json()["result"]["serverInfo"]["name"] == "default"

    def test_server_query_parameter(self, client: TestClient):
        """Should accept the server name as a query parameter."""
        response = client.post("/mcp?server=docs", content=rpc("initialize"))

        assert response.json()["result"]["serverInfo"]["name"] == "docs"

    def test_unknown_server(self, client: TestClient, servers: ServerRegistry):
        """Should answer 400 without creating the server."""
        response = client.post("/mcp/ghost", content=rpc("ping"))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32000
        assert not servers.has_instance("ghost")

    def test_custom_path(self, servers: ServerRegistry):
        """Should mount the endpoint at the configured path."""
        client = TestClient(create_app(RequestProcessor(servers), path="/api/rpc/"))

        assert client.post("/api/rpc/docs", content=rpc("ping")).json()["result"] == {}


class TestVerbs:
    """Tests for HTTP method handling."""

    def test_post_tools_call(self, client: TestClient):
        """Should return the JSON-RPC envelope."""
        response = client.post(
            "/mcp/docs",
            content=rpc("tools/call", {"name": "echo", "arguments": {"message": "hello"}}),
        )

        assert response.json() == {
            "jsonrpc": "2.0",
            "id": 1,
            "result": {"content": [{"type": "text", "text": "hello"}], "isError": False},
        }

    def test_protocol_errors_are_200(self, client: TestClient):
        """Should deliver JSON-RPC errors with HTTP 200."""
        response = client.post("/mcp/docs", content=rpc("tools/call", {"name": "nope"}))

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32601

    def test_parse_error(self, client: TestClient):
        """Should answer invalid JSON with a parse error envelope."""
        response = client.post("/mcp/docs", content="{oops")

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32700

    def test_notification_gets_202(self, client: TestClient, docs: MCPServer):
        """Should answer notifications with 202 and no body."""
        response = client.post("/mcp/docs", content=rpc("notifications/initialized", msg_id=None))

        assert response.status_code == 202
        assert response.content == b""
        assert docs.lifecycle.initialized is True

    def test_core_receives_decoded_body(self, client: TestClient, docs: MCPServer, monkeypatch):
        """Should decode the POST body once and dispatch the parsed mapping."""
        received = []
        dispatch = docs.handle_request

        def record(raw, context=None):
            received.append(raw)
            return dispatch(raw, context=context)

        monkeypatch.setattr(docs, "handle_request", record)

        response = client.post("/mcp/docs", content=rpc("ping", msg_id=4))

        assert response.json() == {"jsonrpc": "2.0", "id": 4, "result": {}}
        assert received == [{"jsonrpc": "2.0", "method": "ping", "params": {}, "id": 4}]

    def test_get_returns_discovery(self, client: TestClient):
        """Should answer GET with the initialize result."""
        response = client.get("/mcp/docs")

        result = response.json()["result"]
        assert response.status_code == 200
        assert result["serverInfo"] == {"name": "docs", "version": "1.0.0"}
        assert result["instructions"] == "Documentation"

    def test_options_preflight(self, client: TestClient, docs: MCPServer):
        """Should answer OPTIONS with 204 and CORS headers, without dispatch."""
        docs.with_cors(["*.example.com"])

        response = client.options("/mcp/docs", headers={"Origin": "https://app.example.com"})

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "https://app.example.com"
        assert response.headers["access-control-allow-methods"] == "POST, GET, OPTIONS"
        assert response.headers["x-frame-options"] == "DENY"
        assert docs.get_stats_summary()["total_requests"] == 0

    def test_other_verbs_405(self, client: TestClient):
        """Should reject unsupported verbs."""
        response = client.put("/mcp/docs", content=rpc("ping"))

        assert response.status_code == 405
        assert response.headers["allow"] == "POST, GET, OPTIONS"


class TestSecurityHeaders:
    """Tests for headers on every response."""

    @pytest.mark.parametrize("path", ["/mcp/docs", "/mcp/ghost"])
    def test_headers_present(self, client: TestClient, path: str):
        """Should add the security headers to successes and failures."""
        response = client.post(path, content=rpc("ping"))

        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"
        assert response.headers["x-xss-protection"] == "1; mode=block"
        assert response.headers["referrer-policy"] == "strict-origin-when-cross-origin"
        assert response.headers["content-security-policy"] == (
            "default-src 'none'; frame-ancestors 'none'"
        )
        assert response.headers["permissions-policy"] == "geolocation=(), microphone=(), camera=()"
        assert "strict-transport-security" not in response.headers

    def test_hsts_behind_https_proxy(self, client: TestClient):
        """Should add HSTS when the request arrived over HTTPS."""
        response = client.post(
            "/mcp/docs", content=rpc("ping"), headers={"X-Forwarded-Proto": "https"}
        )

        assert response.headers["strict-transport-security"] == (
            "max-age=31536000; includeSubDomains"
        )


class TestSecurityPipeline:
    """Tests for denials at the HTTP edge."""

    def test_body_too_large(self, client: TestClient, docs: MCPServer):
        """Should answer 413 without dispatching."""
        docs.with_body_limit(64)
        calls = []
        docs.events.on(events.REQUEST, calls.append)

        payload = rpc("tools/call", {"name": "echo", "arguments": {"message": "x" * 200}})
        response = client.post("/mcp/docs", content=payload)

        assert response.status_code == 413
        assert response.json()["error"]["code"] == -32000
        assert calls == []
        assert docs.get_stats_summary()["total_requests"] == 0

    def test_cors_rejection(self, client: TestClient, docs: MCPServer):
        """Should answer 403 for disallowed origins."""
        docs.with_cors(["*.example.com"])

        rejected = client.post("/mcp/docs", content=rpc("ping"), headers={"Origin": "https://other.com"})
        allowed = client.post(
            "/mcp/docs", content=rpc("ping"), headers={"Origin": "https://app.example.com"}
        )

        assert rejected.status_code == 403
        assert rejected.json()["error"]["message"] == "Origin not allowed"
        assert allowed.status_code == 200
        assert allowed.headers["access-control-allow-origin"] == "https://app.example.com"
        assert allowed.headers["vary"] == "Origin"

    def test_same_origin_passes_cors(self, client: TestClient, docs: MCPServer):
        """Should not treat same-origin requests as cross-origin."""
        docs.with_cors(["https://only.example.com"])

        response = client.post(
            "/mcp/docs", content=rpc("ping"), headers={"Origin": "http://testserver"}
        )

        assert response.status_code == 200

    def test_basic_auth(self, client: TestClient, docs: MCPServer):
        """Should challenge missing credentials and accept valid ones."""
        docs.with_basic_auth("admin", "secret")
        token = base64.b64encode(b"admin:secret").decode()

        denied = client.post("/mcp/docs", content=rpc("ping"))
        allowed = client.post(
            "/mcp/docs", content=rpc("ping"), headers={"Authorization": f"Basic {token}"}
        )

        assert denied.status_code == 401
        assert denied.headers["www-authenticate"] == 'Basic realm="MCP Server docs"'
        assert allowed.status_code == 200

    def test_basic_auth_denial_not_counted(self, client: TestClient, docs: MCPServer):
        """Should leave request statistics untouched when credentials are rejected."""
        docs.with_basic_auth("admin", "secret")
        before = docs.get_stats()["requests"]["successful"]
        wrong = base64.b64encode(b"admin:wrong").decode()

        response = client.post(
            "/mcp/docs", content=rpc("ping"), headers={"Authorization": f"Basic {wrong}"}
        )

        assert response.status_code == 401
        assert docs.get_stats()["requests"]["successful"] == before
        assert docs.get_stats()["requests"]["total"] == 0

    def test_api_key_provider_state_reaches_events(self, client: TestClient, docs: MCPServer):
        """Should pass provider-tagged context state through to events."""

        def provider(key, context):
            context.state["tenant"] = "acme"
            return key == "k-1"

        docs.with_api_key_provider(provider)
        seen = []
        docs.events.on(events.RESPONSE, lambda e: seen.append(e.context.state))

        denied = client.post("/mcp/docs", content=rpc("ping"), headers={"X-API-Key": "bad"})
        allowed = client.post("/mcp/docs", content=rpc("ping"), headers={"X-API-Key": "k-1"})

        assert denied.status_code == 401
        assert allowed.status_code == 200
        assert seen == [{"tenant": "acme"}]

    def test_security_denied_event(self, client: TestClient, docs: MCPServer):
        """Should fire security_denied for every denial."""
        docs.with_body_limit(1)
        denied = []
        docs.events.on(events.SECURITY_DENIED, denied.append)

        client.post("/mcp/docs", content=rpc("ping"))

        assert len(denied) == 1
        assert denied[0].reason == "body_too_large"
        assert denied[0].status == 413


class TestRequestProcessor:
    """Tests for the framework-neutral processor."""

    def test_process_directly(self, servers: ServerRegistry):
        """Should build an HttpResponse without Starlette."""
        processor = RequestProcessor(servers)
        response = processor.process("post", "docs", rpc("ping").encode(), {}, "https", "127.0.0.1")

        assert response.status == 200
        assert json.loads(response.body)["result"] == {}
        assert "Strict-Transport-Security" in response.headers
        assert response.headers["Content-Type"] == "application/json"

    def test_default_server_override(self, servers: ServerRegistry):
        """Should fall back to the configured default server."""
        processor = RequestProcessor(servers, default_server="docs")
        response = processor.process("GET", None)

        assert json.loads(response.body)["result"]["serverInfo"]["name"] == "docs"
