"""
MCP server descriptors and the per-dialect configuration renderer.

Only the descriptor module is re-exported here; the renderer depends on the
engine layer and is imported from agentic.mcp.renderer directly.
"""

from .descriptor import (
    KIND_CONTAINERIZED_STDIO,
    KIND_REMOTE_HTTP,
    KNOWN_PROPERTIES,
    McpServerDescriptor,
    has_mcp_config,
    parse_custom_server,
    rewrite_localhost,
)

__all__ = [
    "KIND_CONTAINERIZED_STDIO",
    "KIND_REMOTE_HTTP",
    "KNOWN_PROPERTIES",
    "McpServerDescriptor",
    "has_mcp_config",
    "parse_custom_server",
    "rewrite_localhost",
]
