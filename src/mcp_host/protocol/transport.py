"""STDIO transport layer for MCP communication.

Handles reading/writing newline-delimited JSON-RPC messages over
stdin/stdout for a single long-lived client process.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

from mcp_host.protocol.jsonrpc import (
    SERVER_ERROR,
    encode,
    format_error,
    format_response,
    peek_id,
    preparse,
)
from mcp_host.security.pipeline import STDIO_TRANSPORT, RequestContext, SecurityDenied

if TYPE_CHECKING:
    from mcp_host.server import MCPServer

SHUTDOWN_METHOD = "shutdown"


class StdioTransport:
    """STDIO transport for MCP communication.

    Reads JSON-RPC messages from stdin and writes responses to stdout.
    Logging goes to stderr to avoid corrupting the protocol stream.
    """

    def __init__(
        self,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            stdin: Input stream (defaults to sys.stdin).
            stdout: Output stream (defaults to sys.stdout).
            stderr: Log stream (defaults to sys.stderr).
        """
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._stderr = stderr or sys.stderr

    def read_message(self) -> str | None:
        """Read a message from stdin.

        Reads lines until a non-empty line is found.

        Returns:
            Message string (stripped), or None on EOF.
        """
        while True:
            try:
                line = self._stdin.readline()
            except (OSError, ValueError):
                return None

            if not line:  # EOF
                return None

            line = line.strip()
            if line:  # Skip empty lines
                return line

    def write_message(self, message: str) -> None:
        """Write a message to stdout.

        Args:
            message: JSON string to write.
        """
        self._stdout.write(message + "\n")
        self._stdout.flush()

    def log(self, message: str) -> None:
        """Write a log message to stderr.

        Args:
            message: Log message.
        """
        self._stderr.write(f"[MCP] {message}\n")
        self._stderr.flush()

    def serve(
        self,
        server: MCPServer,
        headers: dict[str, str] | None = None,
    ) -> int:
        """Run the read/dispatch/write loop until EOF or ``shutdown``.

        Every request line is authorized with the server's basic-auth and
        API-key settings (body size and CORS do not apply to a pipe), then
        dispatched. One response line is written per request; notifications
        get none.

        Args:
            server: Server instance handling the requests.
            headers: Credentials presented for the whole session, e.g.
                ``{"Authorization": "Basic ..."}`` or ``{"X-API-Key": "..."}``.

        Returns:
            Number of messages processed.
        """
        processed = 0
        while True:
            message = self.read_message()
            if message is None:
                self.log("EOF received, shutting down")
                break

            processed += 1
            payload, request = preparse(message)

            context = RequestContext(
                transport=STDIO_TRANSPORT,
                method="POST",
                headers=dict(headers or {}),
                body=message,
            )
            try:
                server.authorize(context)
            except SecurityDenied as e:
                if request is None or not request.is_notification:
                    self.write_message(format_error(peek_id(payload), SERVER_ERROR, e.message))
                continue

            if request is not None and request.method == SHUTDOWN_METHOD:
                if not request.is_notification:
                    self.write_message(format_response(request.id, {}))
                self.log("Shutdown requested")
                break

            response = server.handle_request(payload, context=context)
            if request is not None and request.is_notification:
                continue
            self.write_message(encode(response))

        return processed
