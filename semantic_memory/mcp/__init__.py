from semantic_memory.mcp.server import (
    mcp,
    mcp_stream_app,
    registered_tools,
    MCPRouteNormalizerASGI,
)

__all__ = [
    "mcp",
    "mcp_stream_app",
    "registered_tools",
    "MCPRouteNormalizerASGI",
]
