"""
FastAPI application for the TOON provider tools server.
Loads provider definitions at startup and exposes their tools over REST and
JSON-RPC, plus TOON <-> JSON conversion endpoints.
"""

import json
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from config import (
    API_TITLE,
    API_VERSION,
    CORS_ORIGINS,
    DEFAULT_TABLE_NAME,
    PROVIDERS_DIR,
    RATE_LIMIT,
    SECURE_HEADERS,
    SERVER_NAME,
)
from logger import get_logger, setup_logging
from services.provider_factory import ProviderFactory
from services.tool_registry import ToolRegistry, build_registry
from toonkit.exceptions import ProviderLoadError, ToonParseError, ToonSerializeError
from toonkit.toon import ToonParserOptions, parse, serialize_multi_table, serialize_table

setup_logging()
logger = get_logger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


# --- Rate Limiting ---
def get_real_client_ip(request: Request) -> str:
    """Client IP, respecting X-Forwarded-For / X-Real-IP when behind a proxy."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


limiter = Limiter(key_func=get_real_client_ip)

# --- Metrics ---
REQUEST_COUNT = Counter('api_requests_total', 'Total API requests', ['method', 'endpoint', 'status'])
REQUEST_DURATION = Histogram('api_request_duration_seconds', 'Request duration', ['method', 'endpoint'])
TOOL_CALLS = Counter('tool_calls_total', 'Tool executions', ['tool', 'success'])
ACTIVE_REQUESTS = Gauge('active_requests', 'Currently processing requests')


# --- Lifespan (startup/shutdown) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load providers on startup, close the outbound HTTP client on shutdown."""
    app.state.start_time = time.time()
    factory = ProviderFactory()
    app.state.factory = factory

    logger.info(f"{API_TITLE} v{API_VERSION} starting up (providers: {PROVIDERS_DIR})")
    try:
        app.state.registry = await build_registry(PROVIDERS_DIR, factory)
    except ProviderLoadError as e:
        logger.error(f"Failed to load providers: [{e.code.value}] {e.message}")
        app.state.registry = ToolRegistry()

    yield

    await factory.aclose()
    logger.info(f"{API_TITLE} shutting down")


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    description="Tools generated from TOON provider definitions, served over REST and JSON-RPC",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# --- Middleware ---
@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    for header, value in SECURE_HEADERS.items():
        response.headers[header] = value
    return response


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Track request metrics."""
    ACTIVE_REQUESTS.inc()
    start_time = time.time()

    try:
        response = await call_next(request)
        duration = time.time() - start_time

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).inc()

        REQUEST_DURATION.labels(
            method=request.method,
            endpoint=request.url.path
        ).observe(duration)

        return response
    finally:
        ACTIVE_REQUESTS.dec()


# --- Dependencies ---
def get_tool_registry(request: Request) -> ToolRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Tool registry not initialized")
    return registry


# --- Request models ---
class ToolCallBody(BaseModel):
    arguments: dict[str, Any] = Field(default_factory=dict, description="Tool arguments")


class ToonParseBody(BaseModel):
    text: str = Field(..., description="TOON document")
    options: ToonParserOptions = Field(default_factory=ToonParserOptions)


class ToonSerializeBody(BaseModel):
    records: list[dict[str, Any]] | None = Field(None, description="Rows of a single table")
    table_name: str = Field(DEFAULT_TABLE_NAME, description="Table name for records")
    tables: dict[str, list[dict[str, Any]]] | None = Field(None, description="Several named tables")
    comment_char: str = Field("#", min_length=1, max_length=1)


# --- Endpoints ---

@app.get("/health")
async def health_check():
    """Health check with uptime and tool statistics."""
    uptime = time.time() - getattr(app.state, 'start_time', time.time())
    registry = getattr(app.state, 'registry', None)

    return {
        "status": "ok",
        "service": SERVER_NAME,
        "version": API_VERSION,
        "uptime_seconds": round(uptime, 2),
        "tools": registry.get_stats() if registry else None,
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.get("/tools")
async def list_tools(registry: ToolRegistry = Depends(get_tool_registry)):
    return {"tools": registry.list_tools(), "stats": registry.get_stats()}


@app.post("/tools/{name}")
@limiter.limit(f"{RATE_LIMIT}/minute")
async def call_tool(
    request: Request,
    name: str,
    body: ToolCallBody,
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """
    Execute a tool.

    Request body:
    ```json
    {"arguments": {"apiKey": "...", "year": 2024}}
    ```
    """
    logger.info(f"Tool called: {name}")
    result = await registry.execute_tool(name, body.arguments)
    TOOL_CALLS.labels(tool=name, success=str(result.success).lower()).inc()

    if not result.success and result.error and result.error.code == "TOOL_NOT_FOUND":
        raise HTTPException(status_code=404, detail=result.error.model_dump())
    return result.model_dump()


def _rpc_result(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _rpc_error(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


async def handle_rpc(message: dict, registry: ToolRegistry) -> dict:
    """Dispatch one JSON-RPC request to the MCP-style method handlers."""
    request_id = message.get("id")
    method = message["method"]
    params = message.get("params") or {}

    if method == "initialize":
        return _rpc_result(request_id, {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "serverInfo": {"name": SERVER_NAME, "version": API_VERSION},
            "capabilities": {"tools": {}},
        })

    if method == "tools/list":
        return _rpc_result(request_id, {"tools": registry.list_tools()})

    if method == "tools/call":
        name = params.get("name") if isinstance(params, dict) else None
        if not name:
            return _rpc_error(request_id, INVALID_PARAMS, "Invalid params: tool name is required")

        result = await registry.execute_tool(name, params.get("arguments") or {})
        TOOL_CALLS.labels(tool=name, success=str(result.success).lower()).inc()

        if result.success:
            text = json.dumps(result.data, indent=2, ensure_ascii=False, default=str)
            return _rpc_result(request_id, {"content": [{"type": "text", "text": text}]})

        message_text = result.error.message if result.error else "Unknown error"
        return _rpc_result(request_id, {
            "content": [{"type": "text", "text": f"Error: {message_text}"}],
            "isError": True,
        })

    return _rpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")


@app.post("/mcp")
@limiter.limit(f"{RATE_LIMIT}/minute")
async def mcp_endpoint(request: Request, registry: ToolRegistry = Depends(get_tool_registry)):
    """JSON-RPC 2.0 endpoint (initialize, tools/list, tools/call)."""
    try:
        message = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content=_rpc_error(None, PARSE_ERROR, "Parse error"))

    if not isinstance(message, dict):
        return JSONResponse(
            status_code=400, content=_rpc_error(None, INVALID_REQUEST, "Invalid Request: expected an object")
        )

    request_id = message.get("id")
    if message.get("jsonrpc") != "2.0":
        return JSONResponse(
            status_code=400,
            content=_rpc_error(request_id, INVALID_REQUEST, 'Invalid Request: jsonrpc must be "2.0"'),
        )
    if not isinstance(message.get("method"), str) or not message["method"]:
        return JSONResponse(
            status_code=400,
            content=_rpc_error(request_id, INVALID_REQUEST, "Invalid Request: method is required"),
        )

    try:
        return await handle_rpc(message, registry)
    except Exception as e:
        logger.error(f"Error handling JSON-RPC request: {e}")
        return JSONResponse(status_code=500, content=_rpc_error(request_id, INTERNAL_ERROR, str(e)))


@app.post("/toon/parse")
async def toon_parse(body: ToonParseBody):
    """Parse a TOON document into its JSON tree."""
    try:
        return {"data": parse(body.text, body.options)}
    except ToonParseError as e:
        raise HTTPException(status_code=400, detail=e.to_dict()) from e


@app.post("/toon/serialize")
async def toon_serialize(body: ToonSerializeBody):
    """Serialize one table (records) or several (tables) to TOON text."""
    try:
        if body.tables is not None:
            text = serialize_multi_table(body.tables, body.comment_char)
        elif body.records is not None:
            text = serialize_table(body.records, body.table_name, body.comment_char)
        else:
            raise HTTPException(status_code=422, detail="Provide either 'records' or 'tables'")
    except ToonSerializeError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return {"toon": text}
