"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import semantic_memory.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
        "description": "Semantic memory with decay and reinforcement for AI agents",
        "embedding_model": config.EMBEDDING_MODEL,
        "embedding_dim": config.EMBEDDING_DIM,
        "endpoints": {
            "health": "/health",
            "health_deps": "/health/deps",
            "mcp": "/mcp/",
        },
    }
