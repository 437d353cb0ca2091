"""Request security pipeline.

Applies the configured checks to an inbound request before it reaches the
protocol core, in a fixed order regardless of how the server was
configured:

    1. body size      (HTTP only)
    2. CORS           (HTTP only)
    3. basic auth
    4. API-key provider

Each check is skipped entirely when it is not configured. The first
failing check raises a ``SecurityDenied`` subclass carrying the HTTP
status, a client-safe message and any extra response headers.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

HTTP_TRANSPORT = "http"
STDIO_TRANSPORT = "stdio"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}
HSTS_HEADER = ("Strict-Transport-Security", "max-age=31536000; includeSubDomains")

CORS_ALLOW_METHODS = "POST, GET, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization, X-API-Key"
CORS_MAX_AGE = "86400"

ApiKeyProvider = Callable[[str, "RequestContext"], Any]


class SecurityDenied(Exception):
    """Base class for requests rejected before dispatch."""

    status = 400
    reason = "denied"

    def __init__(self, message: str, headers: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.headers = headers or {}


class PayloadTooLarge(SecurityDenied):
    status = 413
    reason = "body_too_large"


class CorsRejected(SecurityDenied):
    status = 403
    reason = "cors_rejected"


class Unauthorized(SecurityDenied):
    status = 401
    reason = "unauthorized"


@dataclass
class RequestContext:
    """Transport-neutral view of an inbound request.

    ``state`` is request-scoped scratch space: an API-key provider may tag
    it (for example with a tenant id) and the protocol core passes the
    context on to event listeners.
    """

    transport: str = HTTP_TRANSPORT
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: str | bytes = ""
    scheme: str = "http"
    server_name: str = ""
    client: str | None = None
    state: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str, default: str | None = None) -> str | None:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    @property
    def body_size(self) -> int:
        if isinstance(self.body, bytes):
            return len(self.body)
        return len(self.body.encode("utf-8"))

    @property
    def is_https(self) -> bool:
        forwarded = (self.header("x-forwarded-proto") or "").split(",")[0].strip().lower()
        return self.scheme.lower() == "https" or forwarded == "https"


def origin_matches(origin: str, pattern: str) -> bool:
    """Check an Origin header value against one allow-list entry.

    Entries may be ``*``, an exact origin (``https://app.example.com``), or
    a ``*.suffix`` pattern matching any subdomain depth of ``suffix``.

    Args:
        origin: Origin header value.
        pattern: Allow-list entry.

    Returns:
        True if the origin is allowed by this entry.
    """
    pattern = pattern.strip()
    if not pattern:
        return False
    if pattern == "*":
        return True
    if pattern.startswith("*."):
        suffix = pattern[1:].lower()
        host = (urlsplit(origin).hostname or "").lower()
        return bool(host) and host.endswith(suffix)
    return origin.rstrip("/").lower() == pattern.rstrip("/").lower()


def decode_basic_auth(header: str | None) -> tuple[str, str] | None:
    """Decode an ``Authorization: Basic`` header.

    Returns:
        (username, password) or None if the header is missing or malformed.
    """
    if not header:
        return None
    scheme, _, encoded = header.strip().partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


def extract_api_key(context: RequestContext) -> str | None:
    """Pull an API key from ``X-API-Key`` or a bearer ``Authorization`` header."""
    key = context.header("x-api-key")
    if key and key.strip():
        return key.strip()
    authorization = context.header("authorization") or ""
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


@dataclass
class SecurityConfig:
    """Per-instance security settings. Every check is off by default."""

    cors_allowed_origins: list[str] = field(default_factory=list)
    basic_auth_username: str | None = None
    basic_auth_password: str | None = None
    max_request_body_size: int = 0
    api_key_provider: ApiKeyProvider | None = None
    realm: str = "MCP Server"

    @property
    def has_basic_auth(self) -> bool:
        return self.basic_auth_username is not None and self.basic_auth_password is not None

    @property
    def has_cors(self) -> bool:
        return bool(self.cors_allowed_origins)

    def set_cors(self, origins: Iterable[str] | str) -> None:
        if isinstance(origins, str):
            origins = [origins]
        cleaned: list[str] = []
        for origin in origins:
            origin = origin.strip()
            if origin and origin not in cleaned:
                cleaned.append(origin)
        self.cors_allowed_origins = cleaned

    def is_cors_allowed(self, origin: str | None) -> bool:
        """Check whether ``origin`` matches the allow-list."""
        if not origin:
            return False
        return any(origin_matches(origin, pattern) for pattern in self.cors_allowed_origins)

    def verify_basic_auth(self, header: str | None) -> bool:
        """Compare presented Basic credentials with the configured ones."""
        if not self.has_basic_auth:
            return False
        credentials = decode_basic_auth(header)
        if credentials is None:
            return False
        username, password = credentials
        user_ok = hmac.compare_digest(username.encode(), self.basic_auth_username.encode())  # type: ignore[union-attr]
        pass_ok = hmac.compare_digest(password.encode(), self.basic_auth_password.encode())  # type: ignore[union-attr]
        return user_ok and pass_ok

    def verify_api_key(self, key: str | None, context: RequestContext) -> bool:
        """Run the API-key provider. A raised exception counts as a rejection."""
        if self.api_key_provider is None or not key:
            return False
        try:
            return bool(self.api_key_provider(key, context))
        except Exception:
            logger.warning("API key provider raised; rejecting request", exc_info=True)
            return False


class SecurityPipeline:
    """Ordered chain of request checks for one server instance."""

    def __init__(self, config: SecurityConfig) -> None:
        """Initialize the pipeline.

        Args:
            config: Security settings to enforce.
        """
        self._config = config

    @property
    def config(self) -> SecurityConfig:
        return self._config

    def enforce(self, context: RequestContext) -> None:
        """Run every configured check in order.

        Args:
            context: The inbound request.

        Raises:
            SecurityDenied: On the first failing check.
        """
        is_http = context.transport == HTTP_TRANSPORT
        if is_http:
            self._check_body_size(context)
            self._check_cors(context)
        self._check_basic_auth(context)
        self._check_api_key(context)

    def _check_body_size(self, context: RequestContext) -> None:
        limit = self._config.max_request_body_size
        if limit > 0 and context.body_size > limit:
            raise PayloadTooLarge(f"Request body too large: limit is {limit} bytes")

    def _check_cors(self, context: RequestContext) -> None:
        if not self._config.has_cors:
            return
        origin = context.header("origin")
        if not origin or is_same_origin(context):
            return
        if not self._config.is_cors_allowed(origin):
            raise CorsRejected("Origin not allowed")

    def _check_basic_auth(self, context: RequestContext) -> None:
        if not self._config.has_basic_auth:
            return
        if not self._config.verify_basic_auth(context.header("authorization")):
            raise Unauthorized(
                "Authentication required",
                headers={"WWW-Authenticate": f'Basic realm="{self._config.realm}"'},
            )

    def _check_api_key(self, context: RequestContext) -> None:
        if self._config.api_key_provider is None:
            return
        key = extract_api_key(context)
        if key is None:
            raise Unauthorized("API key required")
        if not self._config.verify_api_key(key, context):
            raise Unauthorized("Invalid API key")

    def cors_headers(self, context: RequestContext) -> dict[str, str]:
        """CORS response headers for this request.

        Empty when CORS is not configured or the origin is not allowed.
        """
        if not self._config.has_cors:
            return {}
        origin = context.header("origin")
        if "*" in self._config.cors_allowed_origins:
            allow_origin = "*"
        elif origin and self._config.is_cors_allowed(origin):
            allow_origin = origin
        else:
            return {}

        headers = {
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
            "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
            "Access-Control-Max-Age": CORS_MAX_AGE,
        }
        if allow_origin != "*":
            headers["Vary"] = "Origin"
        return headers


def is_same_origin(context: RequestContext) -> bool:
    """True when the Origin header names the host the request was sent to."""
    origin = context.header("origin")
    host = context.header("host")
    if not origin or not host:
        return False
    return urlsplit(origin).netloc.lower() == host.lower()


def security_headers(context: RequestContext | None = None) -> dict[str, str]:
    """Fixed security headers added to every HTTP response."""
    headers = dict(SECURITY_HEADERS)
    if context is not None and context.is_https:
        headers[HSTS_HEADER[0]] = HSTS_HEADER[1]
    return headers
