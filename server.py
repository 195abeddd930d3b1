"""
Semantic Memory - retrieval ranking and lifecycle for AI agent memories.
MCP server over HTTP, PostgreSQL + pgvector or SQLite backends.
"""

import uvicorn

import semantic_memory.config as config
from app.main import app, asgi_app

__all__ = ["app", "asgi_app"]


if __name__ == "__main__":
    config.logger.info("Semantic memory starting...")
    uvicorn.run(asgi_app, host=config.HOST, port=config.PORT)
