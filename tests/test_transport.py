"""Tests for the stdio transport."""

import base64
import io
import json

from mcp_host.protocol.transport import StdioTransport
from mcp_host.server import MCPServer


def run(server: MCPServer, lines: list[str], headers: dict | None = None) -> tuple[list[dict], str]:
    stdin = io.StringIO("".join(line + "\n" for line in lines))
    stdout = io.StringIO()
    stderr = io.StringIO()
    StdioTransport(stdin=stdin, stdout=stdout, stderr=stderr).serve(server, headers=headers)
    responses = [json.loads(line) for line in stdout.getvalue().splitlines()]
    return responses, stderr.getvalue()


def request(method: str, msg_id: int, params: dict | None = None) -> str:
    return json.dumps({"jsonrpc": "2.0", "id": msg_id, "method": method, "params": params or {}})


class TestStdioTransportIO:
    """Tests for line reading and writing."""

    def test_read_message_skips_blank_lines(self):
        """Should skip empty lines and strip whitespace."""
        transport = StdioTransport(stdin=io.StringIO("\n\n  {\"a\": 1}  \n"))

        assert transport.read_message() == '{"a": 1}'
        assert transport.read_message() is None

    def test_write_message_appends_newline(self):
        """Should write one line per message."""
        stdout = io.StringIO()
        StdioTransport(stdout=stdout).write_message('{"ok":true}')

        assert stdout.getvalue() == '{"ok":true}\n'

    def test_log_goes_to_stderr(self):
        """Should prefix diagnostics and keep them off stdout."""
        stdout = io.StringIO()
        stderr = io.StringIO()
        StdioTransport(stdout=stdout, stderr=stderr).log("hello")

        assert stderr.getvalue() == "[MCP] hello\n"
        assert stdout.getvalue() == ""


class TestServeLoop:
    """Tests for the read/dispatch/write loop."""

    def test_one_response_per_request(self, server: MCPServer):
        """Should answer each request in order."""
        responses, _ = run(
            server,
            [
                request("initialize", 1),
                json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
                "",
                request("tools/call", 2, {"name": "echo", "arguments": {"message": "hi"}}),
            ],
        )

        assert [r["id"] for r in responses] == [1, 2]
        assert responses[1]["result"]["content"][0]["text"] == "hi"
        assert server.lifecycle.initialized is True

    def test_parse_error_line(self, server: MCPServer):
        """Should answer garbage with a parse error and keep going."""
        responses, _ = run(server, ["not json", request("ping", 5)])

        assert responses[0]["error"]["code"] == -32700
        assert responses[0]["id"] is None
        assert responses[1] == {"jsonrpc": "2.0", "id": 5, "result": {}}

    def test_shutdown_acknowledges_and_stops(self, server: MCPServer):
        """Should acknowledge shutdown and ignore anything after it."""
        responses, stderr = run(server, [request("shutdown", 7), request("ping", 8)])

        assert responses == [{"jsonrpc": "2.0", "id": 7, "result": {}}]
        assert "Shutdown requested" in stderr

    def test_eof_ends_loop(self, server: MCPServer):
        """Should return on EOF."""
        responses, stderr = run(server, [])

        assert responses == []
        assert "EOF" in stderr

    def test_returns_processed_count(self, server: MCPServer):
        """Should report how many messages were read."""
        stdin = io.StringIO(request("ping", 1) + "\n" + request("ping", 2) + "\n")
        transport = StdioTransport(stdin=stdin, stdout=io.StringIO(), stderr=io.StringIO())

        assert transport.serve(server) == 2


class TestStdioSecurity:
    """Tests for credential checks on stdio."""

    def test_denied_without_credentials(self, server: MCPServer):
        """Should answer every request with a -32000 error."""
        server.with_basic_auth("admin", "secret")

        responses, _ = run(server, [request("ping", 1)])

        assert responses[0]["id"] == 1
        assert responses[0]["error"] == {"code": -32000, "message": "Authentication required"}

    def test_allowed_with_session_credentials(self, server: MCPServer):
        """Should accept credentials supplied for the session."""
        server.with_basic_auth("admin", "secret")
        token = base64.b64encode(b"admin:secret").decode()

        responses, _ = run(server, [request("ping", 1)], headers={"Authorization": f"Basic {token}"})

        assert responses[0]["result"] == {}

    def test_shutdown_requires_credentials(self, server: MCPServer):
        """Should deny shutdown from an unauthenticated session and keep serving."""
        server.with_basic_auth("admin", "secret")

        responses, stderr = run(server, [request("shutdown", 1), request("ping", 2)])

        assert responses[0]["error"] == {"code": -32000, "message": "Authentication required"}
        assert responses[1]["id"] == 2
        assert "Shutdown requested" not in stderr
        assert "EOF" in stderr

    def test_body_limit_not_applied(self, server: MCPServer):
        """Should ignore the HTTP body limit on stdio."""
        server.with_body_limit(10)

        responses, _ = run(server, [request("ping", 1)])

        assert responses[0]["result"] == {}

    def test_api_key_session(self, server: MCPServer):
        """Should check the session API key with the provider."""
        server.with_api_key_provider(lambda key, context: key == "k-1")

        denied, _ = run(server, [request("ping", 1)], headers={"X-API-Key": "wrong"})
        allowed, _ = run(server, [request("ping", 2)], headers={"X-API-Key": "k-1"})

        assert denied[0]["error"]["message"] == "Invalid API key"
        assert allowed[0]["result"] == {}
