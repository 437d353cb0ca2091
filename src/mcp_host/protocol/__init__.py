"""MCP Protocol layer for JSON-RPC communication."""

from mcp_host.protocol.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SERVER_ERROR,
    JsonRpcError,
    JsonRpcRequest,
    format_error,
    format_response,
    make_error,
    make_response,
    parse_message,
)
from mcp_host.protocol.lifecycle import (
    MCP_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    LifecycleManager,
)

__all__ = [
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "JsonRpcError",
    "JsonRpcRequest",
    "LifecycleManager",
    "METHOD_NOT_FOUND",
    "MCP_PROTOCOL_VERSION",
    "PARSE_ERROR",
    "SERVER_ERROR",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "format_error",
    "format_response",
    "make_error",
    "make_response",
    "parse_message",
]
