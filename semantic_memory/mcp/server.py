"""
MCP server wiring and tool registration.
"""

from __future__ import annotations

from typing import Optional

from fastmcp import FastMCP

import semantic_memory.config as config
from semantic_memory.services import memory_service
from semantic_memory.mcp.auth_middleware import MCPAuthMiddleware

READ_ONLY_TOOL_ANNOTATIONS = {"readOnlyHint": True}
DESTRUCTIVE_TOOL_ANNOTATIONS = {"destructiveHint": True}

mcp = FastMCP("Semantic Memory")

_REGISTERED_TOOLS: list[str] = []


def mcp_tool(*args, **kwargs):
    """Register a tool with FastMCP and remember its name."""
    def decorator(fn):
        _REGISTERED_TOOLS.append(fn.__name__)
        mcp.tool(*args, **kwargs)(fn)
        return fn
    return decorator


def registered_tools() -> list[str]:
    return list(_REGISTERED_TOOLS)


@mcp_tool()
def store_memory(
    content: str,
    tags: Optional[list[str]] = None,
    importance: Optional[float] = None,
    metadata: Optional[dict] = None,
    summary: Optional[str] = None,
    source: Optional[str] = None,
    expires_in_days: Optional[float] = None,
) -> dict:
    """Store a memory. It is embedded and becomes searchable by meaning."""
    return memory_service.store_memory(
        content=content,
        tags=tags,
        importance=importance,
        metadata=metadata,
        summary=summary,
        source=source,
        expires_in_days=expires_in_days,
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def search_memory(
    query: str,
    limit: int = config.DEFAULT_RESULT_LIMIT,
    min_score: float = config.DEFAULT_SEARCH_MIN_SCORE,
    tags: Optional[list[str]] = None,
    source: Optional[str] = None,
) -> dict:
    """Search memories by meaning, ranked by similarity, recency and importance."""
    return memory_service.search_memory(
        query=query,
        limit=limit,
        min_score=min_score,
        tags=tags,
        source=source,
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def get_related(
    memory_id: str,
    limit: int = config.DEFAULT_RESULT_LIMIT,
    include_explicit: bool = True,
    include_similar: bool = True,
) -> dict:
    """Explicitly linked and semantically similar memories for a memory."""
    return memory_service.get_related(
        memory_id=memory_id,
        limit=limit,
        include_explicit=include_explicit,
        include_similar=include_similar,
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def recall_context(
    task: str,
    context: Optional[list[str]] = None,
    limit: int = config.DEFAULT_RESULT_LIMIT,
    min_score: float = config.DEFAULT_RECALL_MIN_SCORE,
) -> dict:
    """Gather context for a task from the task text plus up to 10 context strings."""
    return memory_service.recall_context(
        task=task,
        context=context,
        limit=limit,
        min_score=min_score,
    )


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def forget(
    memory_id: Optional[str] = None,
    tags: Optional[list[str]] = None,
    older_than_days: Optional[int] = None,
    below_importance: Optional[float] = None,
    soft: bool = True,
    mode: Optional[str] = None,
    decay_factor: float = config.DEFAULT_DECAY_FACTOR,
) -> dict:
    """Decay, hide or delete a memory by id, or every memory matching all criteria."""
    return memory_service.forget(
        memory_id=memory_id,
        tags=tags,
        older_than_days=older_than_days,
        below_importance=below_importance,
        soft=soft,
        mode=mode,
        decay_factor=decay_factor,
    )


@mcp_tool()
def reinforce(
    memory_id: str,
    boost: float = config.DEFAULT_REINFORCE_BOOST,
    relate_to_memory_id: Optional[str] = None,
    relation_type: str = "related_to",
    relation_strength: float = config.DEFAULT_RELATION_STRENGTH,
) -> dict:
    """Raise a memory's importance; optionally relate it to another memory."""
    return memory_service.reinforce(
        memory_id=memory_id,
        boost=boost,
        relate_to_memory_id=relate_to_memory_id,
        relation_type=relation_type,
        relation_strength=relation_strength,
    )


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def delete_relation(
    source_memory_id: str,
    target_memory_id: str,
    relation_type: str,
) -> dict:
    """Remove a relation between two memories."""
    return memory_service.delete_relation(
        source_memory_id=source_memory_id,
        target_memory_id=target_memory_id,
        relation_type=relation_type,
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_access_history(memory_id: str, limit: int = 20) -> dict:
    """Recent retrievals of a memory."""
    return memory_service.memory_access_history(memory_id=memory_id, limit=limit)


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_stats() -> dict:
    """Memory counts, averages and backend details."""
    return memory_service.memory_stats()


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_user_guide(
    format: str = "markdown",
    verbosity: str = "short",
) -> dict:
    """Usage guide for agents."""
    return memory_service.memory_user_guide(format=format, verbosity=verbosity)


mcp_stream_app = MCPAuthMiddleware(mcp.http_app(
    path="/",
    transport="streamable-http",
    stateless_http=True,
    json_response=True,
))


class MCPRouteNormalizerASGI:
    """Pure ASGI middleware - no response buffering."""
    def __init__(self, wrapped_app):
        self.wrapped_app = wrapped_app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope.get("path") == "/mcp":
            scope = dict(scope)
            scope["path"] = "/mcp/"
        await self.wrapped_app(scope, receive, send)
