"""Tool argument validation.

Validates ``tools/call`` arguments against the input schema derived from
the tool's argument descriptors before the handler runs.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError


class ValidationError(Exception):
    """Raised when input validation fails."""

    pass


class InputValidator:
    """Validates tool inputs.

    Combines JSON Schema validation with an optional cap on string length.
    """

    def __init__(self, max_string_length: int | None = None) -> None:
        """Initialize the validator.

        Args:
            max_string_length: Maximum allowed string length, or None for no cap.
        """
        self._max_string_length = max_string_length

    @property
    def max_string_length(self) -> int | None:
        return self._max_string_length

    def _validate_string_length(self, value: str, field: str) -> None:
        """Validate string length."""
        if self._max_string_length is not None and len(value) > self._max_string_length:
            raise ValidationError(
                f"Field '{field}' exceeds maximum length of {self._max_string_length}"
            )

    def _check_strings(self, value: Any, field: str) -> None:
        """Walk nested values applying the string length cap."""
        if isinstance(value, str):
            self._validate_string_length(value, field)
        elif isinstance(value, dict):
            for key, item in value.items():
                self._check_strings(item, f"{field}.{key}")
        elif isinstance(value, list):
            for i, item in enumerate(value):
                self._check_strings(item, f"{field}[{i}]")

    def validate_tool_input(
        self, tool_name: str, schema: dict[str, Any], arguments: dict[str, Any]
    ) -> dict[str, Any]:
        """Validate tool input.

        Args:
            tool_name: Name of the tool (for error messages).
            schema: JSON Schema for the tool's input.
            arguments: Arguments to validate.

        Returns:
            The validated arguments.

        Raises:
            ValidationError: If validation fails.
        """
        try:
            Draft202012Validator.check_schema(schema)
            validator = Draft202012Validator(schema)
            errors = sorted(validator.iter_errors(arguments), key=lambda e: [str(p) for p in e.path])
            if errors:
                # Report first error
                error = errors[0]
                path = ".".join(str(p) for p in error.path) if error.path else "root"
                raise ValidationError(f"Invalid arguments at '{path}': {error.message}")
        except SchemaError as e:
            raise ValidationError(f"Invalid schema for tool {tool_name}: {e.message}") from e

        for key, value in arguments.items():
            self._check_strings(value, key)

        return arguments
