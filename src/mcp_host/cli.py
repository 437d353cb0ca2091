"""MCP Host - command line entry point.

Runs named MCP servers over HTTP or stdio::

    mcp-host http --config host.yaml --port 8080
    mcp-host stdio --config host.yaml --server docs
    mcp-host stdio --scan ./tools

Servers, their security settings and the directories scanned for
``@tool``/``@resource``/``@prompt`` definitions come from the YAML config
(see ``mcp_host.config``). For stdio, credentials checked by basic auth or
an API-key provider are taken once from ``MCP_AUTHORIZATION`` and
``MCP_API_KEY``.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from mcp_host import __version__
from mcp_host.config import ConfigLoadError, HostConfig, load_config
from mcp_host.instances import ServerRegistry, registry
from mcp_host.protocol.transport import StdioTransport
from mcp_host.registries.scanner import ScanError
from mcp_host.security.audit import AuditLogger
from mcp_host.server import DEFAULT_SERVER_NAME

logger = logging.getLogger(__name__)

AUTHORIZATION_ENV = "MCP_AUTHORIZATION"
API_KEY_ENV = "MCP_API_KEY"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-host",
        description="Host named MCP servers over HTTP or stdio",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"mcp-host {__version__}",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for stderr diagnostics (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    http = subparsers.add_parser("http", help="Serve over HTTP")
    http.add_argument("--config", "-c", type=Path, help="Path to host config YAML file")
    http.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    http.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    http.add_argument("--path", default="/mcp", help="Endpoint path (default: /mcp)")

    stdio = subparsers.add_parser("stdio", help="Serve a single client over stdin/stdout")
    stdio.add_argument("--config", "-c", type=Path, help="Path to host config YAML file")
    stdio.add_argument(
        "--server",
        "-s",
        default=DEFAULT_SERVER_NAME,
        help=f"Server to expose (default: {DEFAULT_SERVER_NAME})",
    )
    stdio.add_argument(
        "--scan",
        type=Path,
        action="append",
        default=[],
        metavar="PATH",
        help="File or directory to scan for marked definitions (repeatable)",
    )

    return parser


def configure_logging(level: str) -> None:
    # stdout carries the protocol stream on stdio; diagnostics go to stderr
    logging.basicConfig(
        level=getattr(logging, level),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def setup(config_path: Path | None, target: ServerRegistry) -> AuditLogger | None:
    """Load the config (if any), configure servers and attach the audit log.

    Returns:
        The attached audit logger, or None when auditing is off.

    Raises:
        ConfigLoadError: If the config is invalid.
        ScanError: If a configured scan path does not exist.
    """
    if config_path is None:
        return None

    config: HostConfig = load_config(config_path)
    config.apply(target)
    logger.info("Config loaded from: %s", config_path)

    if config.audit_log_file is None:
        return None
    logger.info("Audit log: %s", config.audit_log_file)
    return AuditLogger(config.audit_log_file).attach(target.events)


def stdio_credentials() -> dict[str, str]:
    headers: dict[str, str] = {}
    authorization = os.environ.get(AUTHORIZATION_ENV)
    if authorization:
        headers["Authorization"] = authorization
    api_key = os.environ.get(API_KEY_ENV)
    if api_key:
        headers["X-API-Key"] = api_key
    return headers


def run_stdio(args: argparse.Namespace, target: ServerRegistry) -> int:
    server = target.get(args.server)
    for path in args.scan:
        result = server.scan(path)
        logger.info("Registered %d definitions from %s", result.total, path)

    transport = StdioTransport()
    transport.log(f"MCP server {server.name} started")
    try:
        transport.serve(server, headers=stdio_credentials())
    except KeyboardInterrupt:
        transport.log("Interrupted, shutting down")
        return 130  # Standard exit code for SIGINT
    return 0


def run_http_server(args: argparse.Namespace, target: ServerRegistry) -> int:
    from mcp_host.protocol.http import RequestProcessor, create_app, run_http

    if not target.count():
        target.get(DEFAULT_SERVER_NAME)

    app = create_app(RequestProcessor(target), path=args.path)
    for name in target.get_instance_names():
        logger.info("Serving %s at %s/%s", name, args.path.rstrip("/"), name)
    run_http(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the MCP host.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        audit = setup(args.config, registry)
    except (ConfigLoadError, ScanError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        if args.command == "stdio":
            return run_stdio(args, registry)
        return run_http_server(args, registry)
    except ScanError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if audit is not None:
            audit.close()


if __name__ == "__main__":
    sys.exit(main())
