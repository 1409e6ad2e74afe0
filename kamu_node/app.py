"""Command line entry point and wiring of the oracle provider."""

from __future__ import annotations

import argparse
import ipaddress
import json
import logging
import os
import socket
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from kamu_node.api_client import OdfApiClient, OdfApiClientRest
from kamu_node.config import Config, ConfigError, load_config
from kamu_node.ethereum import JsonRpcChainClient
from kamu_node.provider import OdfOracleProvider, OdfOracleProviderMetrics
from kamu_node.shutdown import trap_signals

BINARY_NAME = "kamu-oracle-provider"
VERSION = "0.1.0"

_log = logging.getLogger(__name__)


class InvalidChainId(Exception):
    """The RPC node serves a different chain than configured."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Invalid chain ID. Expected {expected} actual {actual}")
        self.expected = expected
        self.actual = actual


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments; with none given, print help and exit."""
    parser = argparse.ArgumentParser(prog=BINARY_NAME, description="ODF oracle provider")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument(
        "--config", type=Path, default=Path("config.yaml"), help="Config file path"
    )
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")
    commands.add_parser("run", help="Run the provider")

    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        parser.print_help(sys.stderr)
        raise SystemExit(2)
    return parser.parse_args(args)


def init_rpc_client(config: Config) -> JsonRpcChainClient:
    """Connect to the chain and check that it is the configured one."""
    client = JsonRpcChainClient(config.rpc_url)
    chain_id = client.get_chain_id()
    last_block = client.get_block_number()
    _log.info("Chain info: chain_id=%s last_block=%s", chain_id, last_block)
    if chain_id != config.chain_id:
        raise InvalidChainId(config.chain_id, chain_id)
    return client


def init_api_client(config: Config) -> OdfApiClient:
    return OdfApiClientRest(config.api_url, config.api_access_token)


class _Server(ThreadingHTTPServer):
    daemon_threads = True


class _Server6(_Server):
    address_family = socket.AF_INET6


def build_http_server(
    address: Any, port: int, metrics: OdfOracleProviderMetrics
) -> tuple[ThreadingHTTPServer, tuple[str, int]]:
    """Create the admin HTTP server with health and metrics endpoints."""

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            path = urlsplit(self.path).path
            if path == "/system/health":
                self._reply(200, "application/json", json.dumps({"ok": True}).encode())
            elif path == "/system/metrics":
                self._reply(200, "text/plain; version=0.0.4", metrics.render().encode())
            else:
                self._reply(404, "text/plain", b"Not Found")

        def _reply(self, status: int, content_type: str, body: bytes) -> None:
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: Any) -> None:
            _log.debug("http: " + format, *args)

    ip = ipaddress.ip_address(str(address))
    server_class = _Server6 if ip.version == 6 else _Server
    server = server_class((str(ip), port), Handler)
    host, bound_port = server.server_address[:2]
    return server, (host, bound_port)


def run(config: Config, stop_event: threading.Event | None = None) -> None:
    """Run the provider and its admin HTTP server until stopped."""
    _log.info("Starting ODF Oracle provider: %r", config)

    http_address = ipaddress.ip_address(config.http_address)

    rpc_client = init_rpc_client(config)
    api_client = init_api_client(config)

    metrics = OdfOracleProviderMetrics(config.chain_id, urlsplit(config.api_url).hostname or "")
    provider = OdfOracleProvider(config, rpc_client, api_client, metrics)

    server, local_addr = build_http_server(http_address, config.http_port, metrics)
    _log.info("HTTP API is listening on %s:%s", *local_addr)

    stop = stop_event if stop_event is not None else trap_signals()
    thread = threading.Thread(target=server.serve_forever, name="http-server", daemon=True)
    thread.start()
    try:
        _log.info("Entering provider loop")
        provider.run(stop)
    finally:
        server.shutdown()
        server.server_close()
        thread.join()


def _init_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("KAMU_LOG_LEVEL", "DEBUG").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("urllib3").setLevel(logging.INFO)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    _init_logging()
    try:
        config = load_config(args.config, os.environ)
    except ConfigError as exc:
        _log.error("Invalid configuration: %s", exc)
        return 1
    try:
        run(config)
    except Exception:
        _log.exception("Provider exited with error")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())