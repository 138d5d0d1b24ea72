from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Literal, Optional
from contextlib import asynccontextmanager
import json
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from lyrifind.backend.config import Settings
from lyrifind.backend.llm_factory import create_llm_client
from lyrifind.backend.mcp_client import McpError, create_mcp_client
from lyrifind.backend.orchestrator import Orchestrator
from lyrifind.backend.secret_manager import resolve_genius_token
from lyrifind.mcp.genius import GeniusClient
from lyrifind.mcp.logging_utils import (
    clear_log_context,
    configure_logging,
    get_logger,
    set_log_context,
)
from lyrifind.mcp_server import install_mcp_routes


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "x-vercel-ai-ui-message-stream": "v1",
}


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    role: Literal["system", "user", "assistant"]
    parts: Optional[List[Dict[str, Any]]] = None
    content: Optional[str] = None


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1)


def create_app(settings: Optional[Settings] = None, genius: Optional[GeniusClient] = None) -> FastAPI:
    configure_logging()
    settings = settings or Settings.from_env()
    owns_genius = genius is None
    if genius is None:
        genius = GeniusClient(
            resolve_genius_token(settings),
            base_url=settings.genius_base_url,
            timeout_seconds=settings.genius_timeout_seconds,
        )
    mcp_client = create_mcp_client(settings, genius)
    llm_client = create_llm_client(settings)
    orchestrator = Orchestrator(mcp_client, llm_client, settings) if llm_client else None
    logger = get_logger("backend.api")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            await app.state.mcp_client.start()
        except McpError as exc:
            # The tool server may come up later; tools are listed again on first use.
            logger.warning("mcp_start_failed error=%s", exc)
        try:
            yield
        finally:
            await app.state.mcp_client.stop()
            if owns_genius:
                await app.state.genius.aclose()

    app = FastAPI(title="LyriFind Backend", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.genius = genius
    app.state.mcp_client = mcp_client
    app.state.llm_client = llm_client
    app.state.orchestrator = orchestrator

    rate_limit_enabled = settings.chat_rate_limit.lower() not in {"", "none", "disabled", "0"}
    limiter = Limiter(key_func=get_remote_address, enabled=rate_limit_enabled)
    chat_rate_limit = settings.chat_rate_limit if rate_limit_enabled else "1000/second"
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        client_host = request.client.host if request.client else None
        set_log_context(client_id=client_host)
        logger.debug(
            "http_request_start method=%s path=%s",
            request.method,
            request.url.path,
        )
        response = None
        try:
            response = await call_next(request)
        finally:
            duration_ms = (time.monotonic() - start) * 1000.0
            logger.info(
                "http_request method=%s path=%s status=%s duration_ms=%.2f",
                request.method,
                request.url.path,
                getattr(response, "status_code", "error"),
                duration_ms,
            )
            clear_log_context()
        return response

    @app.post("/api/chat")
    @limiter.limit(chat_rate_limit)
    async def chat(request: Request) -> Response:
        try:
            body = await request.json()
        except ValueError:
            return _invalid_request(settings, "Body is not valid JSON.")
        try:
            payload = ChatRequest.model_validate(body)
        except ValidationError as exc:
            return _invalid_request(settings, json.loads(exc.json(include_url=False)))
        orchestrator: Optional[Orchestrator] = request.app.state.orchestrator
        if orchestrator is None:
            return JSONResponse({"error": "Chat model is not configured."}, status_code=503)
        messages = [message.model_dump(exclude_none=True) for message in payload.messages]
        logger.info("chat_request messages=%s", len(messages))
        return StreamingResponse(
            _sse_stream(orchestrator.stream_turn(messages)),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    install_mcp_routes(app)
    return app


def _invalid_request(settings: Settings, details: Any) -> JSONResponse:
    body: Dict[str, Any] = {"error": "Invalid request format"}
    if settings.is_dev:
        body["details"] = details
    return JSONResponse(body, status_code=400)


def sse_frame(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, separators=(',', ':'), ensure_ascii=False)}\n\n"


async def _sse_stream(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[str]:
    async for event in events:
        yield sse_frame(event)
    yield "data: [DONE]\n\n"
