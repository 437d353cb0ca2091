"""Host configuration loader.

Loads server definitions from a YAML file and applies them to a
``ServerRegistry``. String values support ``${VAR}`` environment expansion
so credentials can stay out of the file.
"""

from __future__ import annotations

import hmac
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from mcp_host.server import DEFAULT_SERVER_NAME, DEFAULT_VERSION

if TYPE_CHECKING:
    from mcp_host.instances import ServerRegistry
    from mcp_host.security.pipeline import RequestContext

logger = logging.getLogger(__name__)

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ConfigLoadError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def expand_env_vars(value: Any) -> Any:
    """Expand environment variables in configuration values.

    Supports ${VAR_NAME} syntax in strings, recursing into lists and
    mappings. Unknown variables are left unchanged.

    Args:
        value: Configuration value potentially containing variable references.

    Returns:
        Value with known environment variables expanded.
    """
    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    if not isinstance(value, str):
        return value

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is not None:
            return env_value
        # Special handling for HOME
        if var_name == "HOME":
            return os.path.expanduser("~")
        return match.group(0)  # Return unchanged if not found

    return ENV_VAR_PATTERN.sub(replacer, value)


def _string_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigLoadError(f"'{field_name}' must be a string or a list of strings")
    return list(value)


class StaticApiKeys:
    """API-key provider accepting a fixed set of keys.

    Keys are compared in constant time. Keys that still contain an
    unexpanded ``${VAR}`` reference are ignored.
    """

    def __init__(self, keys: list[str]) -> None:
        self._keys = [key for key in keys if key and not ENV_VAR_PATTERN.search(key)]

    def __len__(self) -> int:
        return len(self._keys)

    def __call__(self, key: str, context: RequestContext) -> bool:
        presented = key.encode()
        return any(hmac.compare_digest(presented, known.encode()) for known in self._keys)


@dataclass
class ServerSettings:
    """Settings for one named server instance."""

    name: str
    description: str = ""
    version: str = DEFAULT_VERSION
    stats_enabled: bool = True
    cors: list[str] = field(default_factory=list)
    body_limit: int = 0
    basic_auth_username: str | None = None
    basic_auth_password: str | None = None
    api_keys: list[str] = field(default_factory=list)
    max_string_length: int | None = None
    scan: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any] | None) -> ServerSettings:
        """Create settings from a ``servers.<name>`` mapping.

        Raises:
            ConfigLoadError: If a field has the wrong shape.
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigLoadError(f"Server '{name}' must be a mapping")

        body_limit = data.get("body_limit", 0)
        if not isinstance(body_limit, int) or isinstance(body_limit, bool) or body_limit < 0:
            raise ConfigLoadError(f"Server '{name}': 'body_limit' must be a non-negative integer")

        max_string_length = data.get("max_string_length")
        if max_string_length is not None and (
            not isinstance(max_string_length, int) or max_string_length <= 0
        ):
            raise ConfigLoadError(f"Server '{name}': 'max_string_length' must be a positive integer")

        basic_auth = data.get("basic_auth") or {}
        if not isinstance(basic_auth, dict):
            raise ConfigLoadError(f"Server '{name}': 'basic_auth' must be a mapping")
        username = basic_auth.get("username")
        password = basic_auth.get("password")
        if (username is None) != (password is None):
            raise ConfigLoadError(
                f"Server '{name}': 'basic_auth' needs both 'username' and 'password'"
            )

        return cls(
            name=name,
            description=str(data.get("description", "")),
            version=str(data.get("version", DEFAULT_VERSION)),
            stats_enabled=bool(data.get("stats_enabled", True)),
            cors=_string_list(data.get("cors"), f"servers.{name}.cors"),
            body_limit=body_limit,
            basic_auth_username=None if username is None else str(username),
            basic_auth_password=None if password is None else str(password),
            api_keys=_string_list(data.get("api_keys"), f"servers.{name}.api_keys"),
            max_string_length=max_string_length,
            scan=_string_list(data.get("scan"), f"servers.{name}.scan"),
        )


@dataclass
class HostConfig:
    """Host configuration: audit settings plus every server definition."""

    version: str
    audit_log_file: Path | None = None
    servers: dict[str, ServerSettings] = field(default_factory=dict)
    base_dir: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Path | None = None) -> HostConfig:
        """Create configuration from a parsed YAML document.

        Args:
            data: Parsed configuration mapping.
            base_dir: Directory relative paths are resolved against.

        Raises:
            ConfigLoadError: If the document is invalid.
        """
        if "version" not in data:
            raise ConfigLoadError("Config must include 'version' field")

        data = expand_env_vars(data)

        audit = data.get("audit") or {}
        if not isinstance(audit, dict):
            raise ConfigLoadError("'audit' must be a mapping")
        log_file = audit.get("log_file")

        servers_data = data.get("servers") or {}
        if not isinstance(servers_data, dict):
            raise ConfigLoadError("'servers' must be a mapping of name to settings")
        servers = {
            str(name): ServerSettings.from_dict(str(name), settings)
            for name, settings in servers_data.items()
        }

        return cls(
            version=str(data["version"]),
            audit_log_file=Path(log_file).expanduser() if log_file else None,
            servers=servers,
            base_dir=base_dir or Path.cwd(),
        )

    def server_names(self) -> list[str]:
        return list(self.servers) or [DEFAULT_SERVER_NAME]

    def apply(self, registry: ServerRegistry) -> list[str]:
        """Create and configure every declared server in ``registry``.

        Args:
            registry: Registry receiving the instances.

        Returns:
            Names of the configured servers.
        """
        for settings in self.servers.values():
            server = registry.get(
                settings.name,
                description=settings.description,
                version=settings.version,
                stats_enabled=settings.stats_enabled,
            )
            # Existing instances take the file's settings too
            server.set_description(settings.description).set_version(settings.version)
            if settings.stats_enabled:
                server.enable_stats()
            else:
                server.disable_stats()

            if settings.cors:
                server.with_cors(settings.cors)
            if settings.body_limit:
                server.with_body_limit(settings.body_limit)
            if settings.basic_auth_username is not None and settings.basic_auth_password is not None:
                server.with_basic_auth(settings.basic_auth_username, settings.basic_auth_password)
            if settings.api_keys:
                provider = StaticApiKeys(settings.api_keys)
                if not len(provider):
                    logger.warning("Server %s: no usable API keys after expansion", settings.name)
                server.with_api_key_provider(provider)
            if settings.max_string_length is not None:
                server.with_max_string_length(settings.max_string_length)

            for scan_path in settings.scan:
                path = Path(scan_path).expanduser()
                if not path.is_absolute():
                    path = self.base_dir / path
                result = server.scan(path)
                for failed, error in result.errors.items():
                    logger.warning("Server %s: could not load %s: %s", settings.name, failed, error)

            logger.info("Configured MCP server %s", settings.name)
        return list(self.servers)


def load_config(path: Path) -> HostConfig:
    """Load host configuration from a YAML file.

    Args:
        path: Path to the configuration YAML file.

    Returns:
        HostConfig instance.

    Raises:
        ConfigLoadError: If the file cannot be found, parsed, or validated.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigLoadError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse config YAML: {e}") from e

    if not isinstance(config, dict):
        raise ConfigLoadError("Config must be a YAML mapping")

    return HostConfig.from_dict(config, base_dir=path.resolve().parent)
