"""Tests for JSON-RPC 2.0 message parsing and formatting."""

import json
from pathlib import Path

import pytest

from mcp_host.protocol.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    JsonRpcError,
    JsonRpcRequest,
    encode,
    format_error,
    format_response,
    is_error,
    make_error,
    parse_message,
    peek_id,
    preparse,
)


class TestJsonRpcRequest:
    """Tests for parsing JSON-RPC requests."""

    def test_parses_valid_request(self):
        """Should parse a valid request."""
        data = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "tools/list",
            "params": {"cursor": "abc"},
        }
        msg = parse_message(json.dumps(data))

        assert isinstance(msg, JsonRpcRequest)
        assert msg.id == 1
        assert msg.method == "tools/list"
        assert msg.params == {"cursor": "abc"}
        assert msg.is_notification is False

    def test_parses_request_with_string_id(self):
        """Should accept string IDs."""
        msg = parse_message(json.dumps({"jsonrpc": "2.0", "id": "req-123", "method": "test"}))

        assert msg.id == "req-123"

    def test_missing_params_default_to_empty_dict(self):
        """Should treat absent or null params as an empty object."""
        assert parse_message({"jsonrpc": "2.0", "id": 1, "method": "ping"}).params == {}
        assert parse_message({"jsonrpc": "2.0", "id": 1, "method": "ping", "params": None}).params == {}

    def test_accepts_bytes(self):
        """Should decode UTF-8 bytes."""
        msg = parse_message(b'{"jsonrpc": "2.0", "id": 7, "method": "ping"}')

        assert msg.id == 7

    def test_null_id_is_still_a_request(self):
        """Should keep a present-but-null id as a request."""
        msg = parse_message({"jsonrpc": "2.0", "id": None, "method": "ping"})

        assert msg.id is None
        assert msg.is_notification is False

    def test_rejects_wrong_jsonrpc_version(self):
        """Should reject wrong jsonrpc version."""
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message(json.dumps({"jsonrpc": "1.0", "id": 1, "method": "test"}))
        assert exc_info.value.code == INVALID_REQUEST

    def test_rejects_missing_jsonrpc_version(self):
        """Should reject missing jsonrpc field."""
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message(json.dumps({"id": 1, "method": "test"}))
        assert exc_info.value.code == INVALID_REQUEST

    def test_rejects_missing_method(self):
        """Should reject request without method."""
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message(json.dumps({"jsonrpc": "2.0", "id": 1}))
        assert exc_info.value.code == INVALID_REQUEST

    def test_rejects_non_string_method(self):
        """Should reject a numeric method."""
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message({"jsonrpc": "2.0", "id": 1, "method": 42})
        assert exc_info.value.code == INVALID_REQUEST

    def test_rejects_array_params(self):
        """Should reject positional params."""
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message({"jsonrpc": "2.0", "id": 1, "method": "x", "params": [1, 2]})
        assert exc_info.value.code == INVALID_REQUEST

    def test_rejects_boolean_id(self):
        """Should reject ids that are booleans."""
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message({"jsonrpc": "2.0", "id": True, "method": "x"})
        assert exc_info.value.code == INVALID_REQUEST

    def test_rejects_batches(self):
        """Should reject JSON arrays."""
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message(json.dumps([{"jsonrpc": "2.0", "id": 1, "method": "ping"}]))
        assert exc_info.value.code == INVALID_REQUEST


class TestJsonRpcNotification:
    """Tests for parsing JSON-RPC notifications."""

    def test_missing_id_marks_notification(self):
        """Should flag messages without an id key as notifications."""
        msg = parse_message({"jsonrpc": "2.0", "method": "notifications/initialized"})

        assert msg.is_notification is True
        assert msg.id is None


class TestParseErrors:
    """Tests for malformed input."""

    def test_invalid_json(self):
        """Should raise PARSE_ERROR for invalid JSON."""
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message("{not json")
        assert exc_info.value.code == PARSE_ERROR

    def test_empty_message(self):
        """Should raise PARSE_ERROR for blank input."""
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message("   ")
        assert exc_info.value.code == PARSE_ERROR

    def test_invalid_utf8(self):
        """Should raise PARSE_ERROR for undecodable bytes."""
        with pytest.raises(JsonRpcError) as exc_info:
            parse_message(b"\xff\xfe")
        assert exc_info.value.code == PARSE_ERROR


class TestPeekId:
    """Tests for best-effort id extraction."""

    def test_returns_id_from_invalid_request(self):
        """Should find the id even when the envelope is invalid."""
        assert peek_id('{"id": 5, "method": 1}') == 5

    def test_returns_none_for_garbage(self):
        """Should return None for unparseable text."""
        assert peek_id("garbage") is None

    def test_ignores_non_scalar_ids(self):
        """Should ignore ids that are not int or str."""
        assert peek_id({"id": [1]}) is None
        assert peek_id({"id": False}) is None


class TestPreparse:
    """Tests for decode-once transport parsing."""

    def test_returns_decoded_payload_and_request(self):
        """Should hand back the decoded mapping and the parsed request."""
        payload, request = preparse(b'{"jsonrpc": "2.0", "method": "ping"}')

        assert payload == {"jsonrpc": "2.0", "method": "ping"}
        assert request.method == "ping"
        assert request.is_notification is True

    def test_invalid_json_keeps_raw(self):
        """Should return the raw text when it is not JSON."""
        assert preparse("not json") == ("not json", None)

    def test_invalid_envelope_keeps_decoded(self):
        """Should return the decoded structure without a request when invalid."""
        payload, request = preparse('{"jsonrpc": "1.0", "id": 3, "method": "ping"}')

        assert payload["id"] == 3
        assert request is None

    def test_scalar_json_keeps_raw(self):
        """Should leave non-container JSON to the core as text."""
        assert preparse("5") == ("5", None)


class TestFormatting:
    """Tests for response formatting."""

    def test_format_response(self):
        """Should format a success envelope."""
        parsed = json.loads(format_response(1, {"tools": []}))

        assert parsed == {"jsonrpc": "2.0", "id": 1, "result": {"tools": []}}

    def test_format_error_without_data(self):
        """Should omit data when not provided."""
        parsed = json.loads(format_error(2, METHOD_NOT_FOUND, "Method not found: x"))

        assert parsed["error"] == {"code": -32601, "message": "Method not found: x"}
        assert parsed["id"] == 2

    def test_make_error_with_data(self):
        """Should include data when provided."""
        envelope = make_error(None, INTERNAL_ERROR, "boom", data={"detail": 1})

        assert envelope["error"]["data"] == {"detail": 1}
        assert envelope["id"] is None
        assert is_error(envelope)

    def test_encode_is_single_line(self):
        """Should produce compact single-line JSON."""
        text = encode({"jsonrpc": "2.0", "id": 1, "result": {"text": "a\nb"}})

        assert "\n" not in text
        assert json.loads(text)["result"]["text"] == "a\nb"

    def test_encode_stringifies_unknown_types(self):
        """Should render non-JSON values with str()."""
        text = encode({"jsonrpc": "2.0", "id": 1, "result": {"path": Path("/tmp/data")}})

        assert json.loads(text)["result"]["path"] == "/tmp/data"
