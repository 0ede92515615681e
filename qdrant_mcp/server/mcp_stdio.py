"""MCP server over stdio.

Builds a low-level ``mcp`` SDK server whose handlers delegate to
:class:`~qdrant_mcp.server.app.QdrantMCPServer`. The same server object is
mounted by the HTTP transport for streamable HTTP clients.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server

from .. import __version__
from ..errors import UnknownClusterError
from ..observability import setup_logging
from .app import QdrantMCPServer
from .context import ServerContext
from .resources import MIME_TYPE, ClusterResourceRegistry
from .tools import TOOL_DEFINITIONS

logger = logging.getLogger(__name__)

SERVER_NAME = "qdrant-mcp-server"


class ToolCallFailed(Exception):
    """Raised to make the SDK return an ``isError`` result with our text."""


def _instructions(app: QdrantMCPServer) -> str:
    context = app.context
    limits = context.limiter.describe()
    return (
        f"Qdrant tools. Active cluster: {context.registry.get_active()}. "
        f"Available clusters: {', '.join(context.registry.names())}. "
        f"Rate limit: {limits['max_requests']} calls per {limits['window_ms']}ms "
        "per tool and cluster. Pass cluster or cluster_url to target another "
        "cluster; use scroll_points_paginated cursors to page through "
        "large collections."
    )


def build_mcp_server(app: QdrantMCPServer) -> Server:
    """Create the SDK server and register tool and resource handlers."""
    server: Server = Server(
        SERVER_NAME, version=__version__, instructions=_instructions(app)
    )
    resources = ClusterResourceRegistry(app.context)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return [
            types.Tool(
                name=definition.name,
                description=definition.description,
                inputSchema=definition.input_schema(),
                annotations=types.ToolAnnotations(
                    destructiveHint=definition.destructive,
                ),
            )
            for definition in TOOL_DEFINITIONS
        ]

    @server.call_tool()
    async def call_tool(
        name: str, arguments: Optional[Dict[str, Any]]
    ) -> List[types.TextContent]:
        result = await app.call_tool(name, arguments or {})
        if result.is_error:
            raise ToolCallFailed(result.text)
        return [types.TextContent(type="text", text=result.text)]

    @server.list_resources()
    async def list_resources() -> List[types.Resource]:
        return [
            types.Resource(
                uri=item.uri,
                name=item.profile.name,
                description=item.to_dict()["description"],
                mimeType=MIME_TYPE,
            )
            for item in resources.list_resources()
        ]

    @server.list_resource_templates()
    async def list_resource_templates() -> List[types.ResourceTemplate]:
        return [types.ResourceTemplate(**t) for t in resources.list_templates()]

    @server.read_resource()
    async def read_resource(uri: Any) -> Iterable[ReadResourceContents]:
        try:
            text = await resources.read_text(str(uri))
        except KeyError:
            raise ValueError(f"Unknown resource: {uri}") from None
        except UnknownClusterError as exc:
            raise ValueError(exc.message) from exc
        return [ReadResourceContents(content=text, mime_type=MIME_TYPE)]

    return server


async def run_stdio(context: Optional[ServerContext] = None) -> None:
    """Serve MCP over stdio until the client disconnects."""
    app = QdrantMCPServer(context or ServerContext.from_settings())
    await app.start()
    server = build_mcp_server(app)
    logger.info("mcp.stdio.serving", extra={"server": SERVER_NAME})
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream, write_stream, server.create_initialization_options()
            )
    finally:
        await app.stop()


def main() -> None:
    """CLI entrypoint: run the MCP stdio server.

    Honors ``LOG_LEVEL`` when logging was not configured by the caller.
    """
    if not logging.getLogger().hasHandlers():
        setup_logging(os.environ.get("LOG_LEVEL", "INFO"))
    try:
        asyncio.run(run_stdio())
    except KeyboardInterrupt:
        # Suppress traceback on Ctrl-C for a clean exit
        pass


if __name__ == "__main__":
    main()
