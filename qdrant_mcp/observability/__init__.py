"""Observability utilities: logging setup.

Logs go to stderr so the stdio transport keeps stdout for protocol frames.
"""

from __future__ import annotations

import logging
import sys


def setup_logging(level: str = "INFO", protocol_level: str = "WARNING") -> None:
    """Configure application logging.

    Parameters
    ----------
    level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".
    protocol_level: str
        Level applied to the MCP SDK and uvicorn loggers. Set to "DEBUG" to
        see session management and transport-level messages.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=("%(asctime)s %(levelname)s %(name)s - %(message)s"),
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )

    protocol_numeric = getattr(logging, protocol_level.upper(), logging.WARNING)
    for logger_name in (
        "mcp",
        "mcp.server",
        "mcp.server.lowlevel",
        "mcp.server.streamable_http",
        "httpx",
    ):
        logging.getLogger(logger_name).setLevel(protocol_numeric)
