from __future__ import annotations

"""Clients that speak JSON-RPC to the tool server, remotely or in process."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import itertools
import json
import time

import httpx

from lyrifind.backend.config import Settings
from lyrifind.mcp.genius import GeniusClient
from lyrifind.mcp.logging_utils import get_logger
from lyrifind.mcp_server import PROTOCOL_VERSION, handle_request


class McpError(RuntimeError):
    """Raised when a tool-server request fails at the transport or protocol level."""
    pass


@dataclass(frozen=True)
class McpRequest:
    """JSON-RPC request payload for MCP tools."""
    method: str
    params: Dict[str, Any]


def parse_tool_result(result: Any) -> Dict[str, Any]:
    """Extract the tool envelope from an MCP ``tools/call`` result."""
    if not isinstance(result, dict):
        raise McpError(f"Invalid tool result: {result!r}")
    if result.get("isError"):
        raise McpError(f"Tool reported an error: {_first_text(result) or 'unknown error'}")
    structured = result.get("structuredContent")
    if isinstance(structured, dict):
        return structured
    text = _first_text(result)
    if text is None:
        raise McpError("Tool result has no text content.")
    try:
        envelope = json.loads(text)
    except json.JSONDecodeError as exc:
        raise McpError("Tool result text is not JSON.") from exc
    if not isinstance(envelope, dict):
        raise McpError("Tool result is not an object.")
    return envelope


def _first_text(result: Dict[str, Any]) -> Optional[str]:
    content = result.get("content")
    if not isinstance(content, list):
        return None
    for item in content:
        if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str):
            return item["text"]
    return None


class McpClient:
    """Shared request bookkeeping for both transports."""
    def __init__(self, name: str) -> None:
        self._name = name
        self._ids = itertools.count(1)
        self._tools: Optional[List[Dict[str, Any]]] = None
        self._logger = get_logger(__name__)

    async def start(self) -> None:
        """Initialize the session and cache the tool list."""
        start_time = time.monotonic()
        self._logger.info("mcp_start_begin name=%s", self._name)
        await self._send_request(
            McpRequest(
                method="initialize",
                params={
                    "protocolVersion": PROTOCOL_VERSION,
                    "clientInfo": {"name": "lyrifind-backend", "version": "0.1.0"},
                    "capabilities": {},
                },
            )
        )
        await self.list_tools(refresh=True)
        self._logger.info(
            "mcp_start_ready name=%s elapsed_ms=%.2f tools=%s",
            self._name,
            (time.monotonic() - start_time) * 1000.0,
            len(self._tools or []),
        )

    async def stop(self) -> None:
        self._tools = None

    async def list_tools(self, refresh: bool = False) -> List[Dict[str, Any]]:
        """Return tool descriptors, fetching them once unless refresh is set."""
        if self._tools is None or refresh:
            result = await self._send_request(McpRequest(method="tools/list", params={}))
            tools = result.get("tools") if isinstance(result, dict) else None
            if not isinstance(tools, list):
                raise McpError(f"Invalid tools/list result: {result!r}")
            self._tools = tools
        return list(self._tools)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Invoke a tool by name and return its envelope."""
        start = time.monotonic()
        result = await self._send_request(
            McpRequest(method="tools/call", params={"name": name, "arguments": arguments})
        )
        envelope = parse_tool_result(result)
        self._logger.info(
            "mcp_tool_call tool=%s client=%s success=%s elapsed_ms=%.2f",
            name,
            self._name,
            envelope.get("success"),
            (time.monotonic() - start) * 1000.0,
        )
        return envelope

    def _payload(self, request: McpRequest) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": request.method,
            "params": request.params,
        }

    @staticmethod
    def _unwrap(response: Any, req_id: int) -> Any:
        if not isinstance(response, dict):
            raise McpError(f"Invalid MCP response: {response!r}")
        if response.get("id") != req_id:
            raise McpError(f"Mismatched MCP response id: {response.get('id')!r}")
        if "error" in response:
            raise McpError(response["error"])
        if "result" not in response:
            raise McpError(f"Invalid MCP response: {response}")
        return response["result"]

    async def _send_request(self, request: McpRequest) -> Any:
        raise NotImplementedError


class McpHttpClient(McpClient):
    """JSON-RPC over HTTP POST to a remote tool server."""
    def __init__(
        self,
        url: str,
        timeout_seconds: float,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(name="mcp_http")
        self._url = url
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json, text/event-stream"},
        )

    async def stop(self) -> None:
        await super().stop()
        await self._client.aclose()

    async def _send_request(self, request: McpRequest) -> Any:
        payload = self._payload(request)
        try:
            response = await self._client.post(self._url, json=payload)
        except httpx.TimeoutException as exc:
            raise McpError(f"MCP request timed out: {request.method}") from exc
        except httpx.HTTPError as exc:
            raise McpError(f"MCP server unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise McpError(f"MCP HTTP error {response.status_code}: {response.text[:200]}")
        try:
            body = response.json()
        except ValueError as exc:
            raise McpError("MCP server returned invalid JSON.") from exc
        return self._unwrap(body, payload["id"])


class LocalMcpClient(McpClient):
    """Routes JSON-RPC through the in-process dispatcher."""
    def __init__(self, genius: GeniusClient) -> None:
        super().__init__(name="mcp_local")
        self._genius = genius

    async def _send_request(self, request: McpRequest) -> Any:
        payload = self._payload(request)
        response = await handle_request(payload, self._genius)
        return self._unwrap(response, payload["id"])


def create_mcp_client(settings: Settings, genius: GeniusClient) -> McpClient:
    """Use the remote server when MCP_SERVER_URL is set, else dispatch in process."""
    if settings.mcp_server_url:
        return McpHttpClient(settings.mcp_server_url, settings.mcp_timeout_seconds)
    return LocalMcpClient(genius)
