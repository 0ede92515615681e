"""Command-line interface to start the Qdrant MCP server.

Runs the MCP server over stdio by default, or the HTTP app (REST tools plus
MCP streamable HTTP at ``/mcp``) with ``--http``.

Usage
-----
    qdrant-mcp                      # stdio, for MCP desktop clients
    qdrant-mcp --http --port 3000   # HTTP
    qdrant-mcp --config clusters.json -v
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from typing import List, Optional

import uvicorn

from ..config.models import EnvSettings
from ..observability import setup_logging
from .context import ServerContext
from .http import create_app
from .mcp_stdio import run_stdio

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qdrant-mcp", description="Qdrant MCP server"
    )
    parser.add_argument(
        "--config",
        help="Path to JSON cluster config (overrides QDRANT_MCP_CONFIG)",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        help="Logging level (overrides environment)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (once sets DEBUG, twice adds MCP protocol logs)",
    )
    parser.add_argument(
        "--http",
        action="store_true",
        help="Serve HTTP (REST tools and MCP streamable HTTP) instead of stdio",
    )
    parser.add_argument("--host", help="HTTP bind host (default: HOST or 0.0.0.0)")
    parser.add_argument(
        "--port", type=int, help="HTTP port (default: PORT or 3000)"
    )
    return parser


def load_settings(config_path: Optional[str]) -> EnvSettings:
    """Environment settings with CLI overrides applied."""
    settings = EnvSettings()
    if config_path:
        settings = settings.model_copy(update={"QDRANT_MCP_CONFIG": config_path})
    return settings


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint for running the Qdrant MCP server."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.config and not os.path.isfile(args.config):
        parser.error(f"config file not found: {args.config}")

    settings = load_settings(args.config)
    effective_level = args.log_level or (
        "DEBUG" if args.verbose > 0 else settings.log_level.upper()
    )
    # Apply early so subsequent imports use configured level
    setup_logging(
        effective_level, protocol_level="DEBUG" if args.verbose > 1 else "WARNING"
    )

    context = ServerContext.from_settings(settings)
    if args.http:
        host = args.host or settings.HOST
        port = args.port or settings.PORT
        logger.info("cli.http.start", extra={"host": host, "port": port})
        uvicorn.run(
            create_app(context),
            host=host,
            port=port,
            log_level=effective_level.lower(),
        )
        return

    try:
        asyncio.run(run_stdio(context))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
