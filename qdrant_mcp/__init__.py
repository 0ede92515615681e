"""
Qdrant MCP Python package.

This package hosts the Qdrant MCP server: the cluster registry, the tool
rate limiter, resumable scroll cursors, the Qdrant REST adapter and the
stdio/HTTP transports. See README.md for usage.
"""

from .__version__ import __version__

__all__ = ["__version__"]
