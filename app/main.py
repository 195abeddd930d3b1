"""
FastAPI app wiring for the semantic memory service.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

import semantic_memory.config as config
from semantic_memory.db import dispose_db, init_db
from semantic_memory.mcp import mcp_stream_app, MCPRouteNormalizerASGI
from semantic_memory.services import access_ledger, lifecycle, memory_service
from app.middleware import configure_middleware
from app.routes.health import router as health_router
from app.routes.root import router as root_router


rate_limiter = None
expiry_task = None


async def _expiry_loop() -> None:
    if config.EXPIRY_SWEEP_SECONDS <= 0:
        return
    while True:
        await asyncio.sleep(config.EXPIRY_SWEEP_SECONDS)
        try:
            await asyncio.to_thread(lifecycle.run_expiry_sweep)
        except Exception as exc:
            config.logger.warning(f"Expiry sweep error: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    global expiry_task
    init_db()
    memory_service.init_http_client()
    if config.EXPIRY_SWEEP_SECONDS > 0:
        await asyncio.to_thread(lifecycle.run_expiry_sweep)
        expiry_task = asyncio.create_task(_expiry_loop())
    try:
        async with mcp_stream_app.lifespan(mcp_stream_app):
            yield
    finally:
        if expiry_task:
            expiry_task.cancel()
            try:
                await expiry_task
            except asyncio.CancelledError:
                pass
            expiry_task = None
        access_ledger.shutdown()
        memory_service.cleanup_http_client()
        if rate_limiter:
            await rate_limiter.close()
        dispose_db()


app = FastAPI(title="Semantic Memory", redirect_slashes=False, lifespan=lifespan)
rate_limiter = configure_middleware(app)

app.include_router(health_router)
app.include_router(root_router)

app.mount("/mcp/", mcp_stream_app)


asgi_app = MCPRouteNormalizerASGI(app)
