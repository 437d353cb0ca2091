"""Security layer: request pipeline, input validation and audit logging."""

from mcp_host.security.pipeline import (
    CorsRejected,
    PayloadTooLarge,
    RequestContext,
    SecurityConfig,
    SecurityDenied,
    SecurityPipeline,
    Unauthorized,
)
from mcp_host.security.validator import InputValidator, ValidationError

__all__ = [
    "CorsRejected",
    "InputValidator",
    "PayloadTooLarge",
    "RequestContext",
    "SecurityConfig",
    "SecurityDenied",
    "SecurityPipeline",
    "Unauthorized",
    "ValidationError",
]
