"""
API-key gate for the MCP endpoint.

Accepts ``X-API-Key: <key>`` or ``Authorization: Bearer <key>`` and sets the
request context for the duration of the call (contextvars, async-safe).
"""

from __future__ import annotations

import hmac
import json
from typing import Optional

import semantic_memory.config as config
from semantic_memory.context import (
    AuthContext,
    RequestContext,
    get_current_request_context,
    reset_current_request_context,
    set_current_request_context,
)


def get_current_context() -> RequestContext:
    """Get current request context, or an anonymous one if not set."""
    ctx = get_current_request_context()
    if ctx is not None:
        return ctx
    return RequestContext(auth=AuthContext(actor="anonymous"))


def extract_api_key(headers: dict[str, str]) -> Optional[str]:
    api_key = headers.get("x-api-key")
    if api_key:
        return api_key.strip()
    authorization = headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def api_key_matches(candidate: Optional[str], expected: str) -> bool:
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


class MCPAuthMiddleware:
    """
    ASGI middleware that validates the shared API key and sets request context.
    """

    def __init__(self, app, require_auth: Optional[bool] = None, api_key: Optional[str] = None):
        self.app = app
        self.require_auth = config.REQUIRE_API_KEY if require_auth is None else require_auth
        self.api_key = config.API_KEY if api_key is None else api_key

    def __getattr__(self, name):
        return getattr(self.app, name)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = {}
        for header_name, header_value in scope.get("headers", []):
            headers[header_name.decode("latin1").lower()] = header_value.decode("latin1")
        client = scope.get("client")
        client_host = client[0] if client else None

        if self.require_auth:
            if not api_key_matches(extract_api_key(headers), self.api_key):
                config.logger.info("mcp_auth_rejected", extra={"client_host": client_host})
                await self._send_error(send, 401, "Valid API key required")
                return
            auth_ctx = AuthContext(actor="api_key", authenticated=True)
        else:
            auth_ctx = AuthContext(actor="anonymous")

        req_ctx = RequestContext(
            auth=auth_ctx,
            request_id=headers.get("x-request-id"),
            client_host=client_host,
        )
        token = set_current_request_context(req_ctx)
        try:
            await self.app(scope, receive, send)
        finally:
            reset_current_request_context(token)

    async def _send_error(self, send, status_code: int, detail: str):
        """Send JSON error response."""
        body = json.dumps({"error": detail}).encode("utf-8")

        await send({
            "type": "http.response.start",
            "status": status_code,
            "headers": [
                [b"content-type", b"application/json"],
                [b"content-length", str(len(body)).encode("latin1")],
                [b"www-authenticate", b"Bearer"],
            ],
        })

        await send({
            "type": "http.response.body",
            "body": body,
        })
