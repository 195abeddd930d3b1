#!/usr/bin/env python3
"""Exercise a running server over the MCP streamable HTTP transport."""
import os

import httpx
import pytest

BASE_URL = os.getenv("SEMANTIC_MEMORY_BASE_URL")

if not BASE_URL:
    pytest.skip(
        "Set SEMANTIC_MEMORY_BASE_URL to run MCP integration tests",
        allow_module_level=True,
    )

HEADERS = {
    "Accept": "application/json, text/event-stream",
    "X-API-Key": os.getenv("SEMANTIC_MEMORY_API_KEY", ""),
}


def mcp_call(tool, params=None):
    """Call an MCP tool via JSON-RPC."""
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/call",
        "params": {"name": tool, "arguments": params or {}},
    }

    resp = httpx.post(f"{BASE_URL}/mcp/", json=payload, headers=HEADERS, timeout=30)
    resp.raise_for_status()
    return resp.json()


def test_mcp_protocol():
    result = mcp_call(
        "store_memory",
        {"content": "Integration memory via MCP", "tags": ["mcp_test"], "importance": 0.6},
    )
    assert result["jsonrpc"] == "2.0"

    result = mcp_call("search_memory", {"query": "Integration memory", "tags": ["mcp_test"]})
    assert result["jsonrpc"] == "2.0"

    result = mcp_call("forget", {"tags": ["mcp_test"]})
    assert result["jsonrpc"] == "2.0"

    result = mcp_call("memory_stats", {})
    assert result["jsonrpc"] == "2.0"
