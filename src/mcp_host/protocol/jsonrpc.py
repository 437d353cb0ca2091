"""JSON-RPC 2.0 message parsing and formatting.

Implements the JSON-RPC 2.0 envelope handling used by every transport.
Envelopes are plain dictionaries; transports decide how to serialize them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Reserved for transport-level denials (body too large, CORS, auth)
SERVER_ERROR = -32000

JSONRPC_VERSION = "2.0"


class JsonRpcError(Exception):
    """JSON-RPC error with code and message."""

    def __init__(self, code: int, message: str, data: Any | None = None) -> None:
        """Initialize the error.

        Args:
            code: JSON-RPC error code.
            message: Human-readable error message.
            data: Optional additional error data.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


@dataclass
class JsonRpcRequest:
    """Represents a parsed JSON-RPC request.

    ``is_notification`` is True when the envelope carried no ``id`` key at all.
    A present-but-null id is still a request.
    """

    id: int | str | None
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    is_notification: bool = False


def decode(raw: str | bytes | dict[str, Any]) -> Any:
    """Decode a raw message into Python data.

    Args:
        raw: JSON text, UTF-8 bytes, or an already parsed structure.

    Returns:
        The decoded data.

    Raises:
        JsonRpcError: If the text is not valid JSON.
    """
    if isinstance(raw, dict | list):
        return raw

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise JsonRpcError(PARSE_ERROR, "Parse error: body is not valid UTF-8") from e

    if not isinstance(raw, str) or not raw.strip():
        raise JsonRpcError(PARSE_ERROR, "Parse error: empty message")

    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise JsonRpcError(PARSE_ERROR, f"Parse error: {e}") from e


def parse_message(raw: str | bytes | dict[str, Any]) -> JsonRpcRequest:
    """Parse a JSON-RPC message.

    Args:
        raw: Raw JSON string/bytes or a pre-parsed dictionary.

    Returns:
        Parsed request.

    Raises:
        JsonRpcError: If the message is invalid.
    """
    data = decode(raw)

    # Batches are not supported
    if not isinstance(data, dict):
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: message must be an object")

    if data.get("jsonrpc") != JSONRPC_VERSION:
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: jsonrpc must be '2.0'")

    method = data.get("method")
    if not isinstance(method, str) or not method:
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: method must be a string")

    params = data.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, dict):
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: params must be an object")

    if "id" not in data:
        return JsonRpcRequest(id=None, method=method, params=params, is_notification=True)

    msg_id = data["id"]
    if msg_id is not None and (isinstance(msg_id, bool) or not isinstance(msg_id, int | str)):
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: id must be integer, string or null")
    return JsonRpcRequest(id=msg_id, method=method, params=params)


def preparse(
    raw: str | bytes | dict[str, Any],
) -> tuple[str | bytes | dict[str, Any], JsonRpcRequest | None]:
    """Decode a transport message once.

    Returns:
        The payload to hand to ``MCPServer.handle_request`` (the decoded
        structure when the text is valid JSON, otherwise ``raw`` so the core
        reports the error) and the parsed request, or None when invalid.
    """
    try:
        data = decode(raw)
    except JsonRpcError:
        return raw, None
    if not isinstance(data, dict | list):
        return raw, None

    try:
        return data, parse_message(data)
    except JsonRpcError:
        return data, None


def peek_id(raw: str | bytes | dict[str, Any]) -> int | str | None:
    """Best-effort extraction of the request id from a possibly invalid message."""
    try:
        data = decode(raw)
    except JsonRpcError:
        return None
    if isinstance(data, dict):
        msg_id = data.get("id")
        if isinstance(msg_id, int | str) and not isinstance(msg_id, bool):
            return msg_id
    return None


def make_response(msg_id: int | str | None, result: Any) -> dict[str, Any]:
    """Build a successful JSON-RPC response envelope.

    Args:
        msg_id: Request ID to echo back.
        result: Result payload.

    Returns:
        Response envelope.
    """
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": msg_id,
        "result": result,
    }


def make_error(
    msg_id: int | str | None,
    code: int,
    message: str,
    data: Any | None = None,
) -> dict[str, Any]:
    """Build a JSON-RPC error envelope.

    Args:
        msg_id: Request ID (or None for parse errors).
        code: Error code.
        message: Error message.
        data: Optional error data.

    Returns:
        Error envelope.
    """
    error_obj: dict[str, Any] = {
        "code": code,
        "message": message,
    }
    if data is not None:
        error_obj["data"] = data

    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": msg_id,
        "error": error_obj,
    }


def format_response(msg_id: int | str | None, result: Any) -> str:
    """Format a successful JSON-RPC response as JSON text."""
    return encode(make_response(msg_id, result))


def format_error(
    msg_id: int | str | None,
    code: int,
    message: str,
    data: Any | None = None,
) -> str:
    """Format a JSON-RPC error response as JSON text."""
    return encode(make_error(msg_id, code, message, data))


def encode(envelope: dict[str, Any]) -> str:
    """Serialize an envelope to a single line of JSON.

    Values that are not JSON-native are rendered with ``str()``.
    """
    return json.dumps(envelope, default=str, separators=(",", ":"))


def is_error(envelope: dict[str, Any]) -> bool:
    """Check whether an envelope is an error response."""
    return "error" in envelope
