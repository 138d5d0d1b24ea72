from __future__ import annotations

import argparse
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
import uvicorn

from lyrifind.backend.config import Settings
from lyrifind.backend.secret_manager import resolve_genius_token
from lyrifind.mcp.genius import GeniusClient
from lyrifind.mcp.logging_utils import configure_logging, get_logger, summarize_payload
from lyrifind.mcp.tools import call_tool, list_tools


SERVER_NAME = "lyrifind-mcp-server"
SERVER_VERSION = "0.1.0"
PROTOCOL_VERSION = "2025-03-26"

logger = get_logger(__name__)


def _error_response(request_id: Optional[Any], code: int, message: str) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message},
    }


def _result_response(request_id: Optional[Any], result: Any) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "result": result,
    }


def _tool_result(envelope: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "content": [{"type": "text", "text": json.dumps(envelope)}],
        "structuredContent": envelope,
        "isError": False,
    }


async def handle_request(request: Dict[str, Any], genius: GeniusClient) -> Optional[Dict[str, Any]]:
    """Dispatch one JSON-RPC request. Returns None for notifications."""
    method = request.get("method")
    request_id = request.get("id")
    params = request.get("params", {}) or {}
    logger.debug("MCP request method=%s params=%s", method, summarize_payload(params))

    if method == "initialize":
        result = {
            "protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            "capabilities": {"tools": {}},
        }
        return _result_response(request_id, result)

    if method == "tools/list":
        result = {"tools": list_tools()}
        logger.debug("MCP response id=%s result=%s", request_id, summarize_payload(result))
        return _result_response(request_id, result)

    if method == "tools/call":
        name = params.get("name")
        if not name:
            return _error_response(request_id, -32602, "name is required")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            return _error_response(request_id, -32602, "arguments must be an object")
        try:
            envelope = await call_tool(name, arguments, genius)
        except ValueError as exc:
            return _error_response(request_id, -32602, str(exc))
        logger.info("mcp_tool_call tool=%s success=%s", name, envelope.get("success"))
        logger.debug("MCP response id=%s result=%s", request_id, summarize_payload(envelope))
        return _result_response(request_id, _tool_result(envelope))

    if method == "ping":
        return _result_response(request_id, {})

    if request_id is None:
        return None

    return _error_response(request_id, -32601, f"Unknown method: {method}")


def create_mcp_app(settings: Settings, genius: Optional[GeniusClient] = None) -> FastAPI:
    """Build the tool server. An injected client stays owned by the caller."""
    owns_client = genius is None
    if genius is None:
        genius = GeniusClient(
            resolve_genius_token(settings),
            base_url=settings.genius_base_url,
            timeout_seconds=settings.genius_timeout_seconds,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if owns_client:
                await app.state.genius.aclose()

    app = FastAPI(title="LyriFind MCP Server", version=SERVER_VERSION, lifespan=lifespan)
    app.state.genius = genius
    install_mcp_routes(app)
    return app


def install_mcp_routes(app: FastAPI, prefix: str = "") -> None:
    """Register the JSON-RPC, health and descriptor routes on an app.

    Expects ``app.state.genius`` to hold the shared GeniusClient.
    """

    @app.post(f"{prefix}/mcp")
    async def mcp_endpoint(request: Request) -> Response:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            return JSONResponse(_error_response(None, -32700, f"Invalid JSON: {exc}"))
        if not isinstance(payload, dict):
            return JSONResponse(_error_response(None, -32600, "Invalid request"))
        try:
            response = await handle_request(payload, request.app.state.genius)
        except Exception:
            logger.exception("mcp_request_failed method=%s", payload.get("method"))
            return JSONResponse(
                _error_response(payload.get("id"), -32603, "Internal server error"),
                status_code=500,
            )
        if response is None:
            return Response(status_code=202)
        return JSONResponse(response)

    @app.get(f"{prefix}/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "service": SERVER_NAME,
            "version": SERVER_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get(f"{prefix}/")
    async def describe() -> Dict[str, Any]:
        return {
            "name": "LyriFind MCP Server",
            "version": SERVER_VERSION,
            "description": "Model Context Protocol server for song identification via Genius API",
            "endpoints": {"mcp": f"{prefix}/mcp", "health": f"{prefix}/health"},
        }


def main() -> None:
    parser = argparse.ArgumentParser(description="LyriFind MCP server (HTTP).")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind.")
    parser.add_argument("--port", type=int, default=None, help="Port to bind (defaults to $PORT or 3001).")
    args = parser.parse_args()
    configure_logging()
    settings = Settings.from_env()
    app = create_mcp_app(settings)
    logger.info("mcp_server_start host=%s port=%s", args.host, args.port or settings.mcp_port)
    uvicorn.run(app, host=args.host, port=args.port or settings.mcp_port)


if __name__ == "__main__":
    main()
