"""Tests for tool input validation."""

import pytest

from mcp_host.security.validator import InputValidator, ValidationError

SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string"},
        "limit": {"type": "integer"},
        "tags": {"type": "array"},
    },
    "required": ["query"],
}


class TestInputValidator:
    """Tests for JSON schema validation."""

    def test_valid_input(self):
        """Should return the arguments unchanged."""
        args = {"query": "mcp", "limit": 5}

        assert InputValidator().validate_tool_input("search", SCHEMA, args) == args

    def test_missing_required(self):
        """Should reject missing required fields."""
        with pytest.raises(ValidationError, match="'query' is a required property"):
            InputValidator().validate_tool_input("search", SCHEMA, {})

    def test_wrong_type_reports_path(self):
        """Should name the offending field."""
        with pytest.raises(ValidationError, match="Invalid arguments at 'limit'"):
            InputValidator().validate_tool_input("search", SCHEMA, {"query": "x", "limit": "5"})

    def test_invalid_schema(self):
        """Should report broken schemas."""
        with pytest.raises(ValidationError, match="Invalid schema for tool broken"):
            InputValidator().validate_tool_input("broken", {"type": "nonsense"}, {})


class TestStringLength:
    """Tests for the optional string cap."""

    def test_no_cap_by_default(self):
        """Should accept long strings without a cap."""
        InputValidator().validate_tool_input("search", SCHEMA, {"query": "x" * 100_000})

    def test_cap_applies_to_nested_strings(self):
        """Should check strings inside lists."""
        validator = InputValidator(max_string_length=3)

        with pytest.raises(ValidationError, match=r"tags\[1\]"):
            validator.validate_tool_input("search", SCHEMA, {"query": "ok", "tags": ["a", "long"]})
