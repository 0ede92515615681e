"""HTTP transport for the Qdrant MCP server.

Exposes:

- ``/health`` and ``/ready`` probes (never authenticated);
- ``/capabilities``: server version, tools, clusters and rate limit;
- ``/resources`` and ``/resources/clusters/{name}``: cluster resources;
- ``POST /tools/{tool_name}``: REST access to every tool, protected by a
  bearer token when ``QDRANT_MCP_HTTP_TOKEN`` is set;
- ``/mcp``: MCP streamable HTTP for MCP clients.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import psutil
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse as StarletteJSONResponse

from .. import __version__
from ..config.models import EnvSettings
from ..errors import UnknownClusterError
from ..observability import setup_logging
from ..utils.correlation import set_request_id
from .app import QdrantMCPServer
from .context import ServerContext
from .mcp_stdio import SERVER_NAME, build_mcp_server
from .models import CapabilitiesResponse, ErrorResponse, HealthResponse
from .resources import MIME_TYPE, URI_PREFIX, ClusterResourceRegistry
from .tools import tool_names

logger = logging.getLogger(__name__)


class ResourceListResponse(BaseModel):
    """Response model for resource list."""

    resources: List[Dict[str, Any]] = Field(
        description="List of available MCP resources"
    )
    resource_templates: List[Dict[str, Any]] = Field(default_factory=list)


class ResourceReadResponse(BaseModel):
    """Response model for resource read."""

    contents: List[Dict[str, Any]] = Field(description="Resource contents")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Assign a correlation id to every request and log MCP traffic.

    The id comes from the ``x-correlation-id`` header when present and is
    echoed back in the response.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        req_id = request.headers.get("x-correlation-id") or uuid.uuid4().hex[:16]
        set_request_id(req_id)
        response = await call_next(request)
        response.headers["x-correlation-id"] = req_id
        if request.url.path.startswith("/mcp"):
            logger.debug(
                "http.mcp.request",
                extra={
                    "req_id": req_id,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
            )
        return response


class MCPHTTPEndpoint:
    """ASGI endpoint handing ``/mcp`` requests to the session manager."""

    def __init__(self, session_manager: StreamableHTTPSessionManager) -> None:
        self.session_manager = session_manager

    async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
        try:
            await self.session_manager.handle_request(scope, receive, send)
        except RuntimeError:
            # Session manager task group not running (lifespan not entered)
            resp = StarletteJSONResponse(
                {"error": "MCP session manager not initialized"},
                status_code=503,
            )
            await resp(scope, receive, send)


def _cors_origins(settings: EnvSettings) -> List[str]:
    raw = settings.QDRANT_MCP_CORS_ORIGINS or ""
    return [o.strip() for o in raw.split(",") if o.strip()]


def _apply_cors(app: FastAPI, settings: EnvSettings) -> None:
    """Enable CORS if QDRANT_MCP_CORS_ORIGINS is set."""
    allow_origins = _cors_origins(settings)
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["mcp-session-id", "x-correlation-id"],
        )


def _make_auth_dependency(expected: Optional[str]):
    """Return a dependency function that enforces optional bearer token."""

    def _auth_dependency(authorization: Optional[str] = Header(default=None)) -> None:
        if expected is None:
            return
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
        token = authorization.split(" ", 1)[1]
        if token != expected:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)

    return _auth_dependency


def _log_startup_memory() -> None:
    """Log process memory and the container memory limit, when visible."""
    mem_info = psutil.Process().memory_info()
    logger.info(
        "http.startup.memory",
        extra={
            "rss_mb": round(mem_info.rss / 1024 / 1024, 1),
            "vms_mb": round(mem_info.vms / 1024 / 1024, 1),
        },
    )
    for path in (
        "/sys/fs/cgroup/memory.max",
        "/sys/fs/cgroup/memory/memory.limit_in_bytes",
    ):
        try:
            with open(path) as f:
                raw = f.read().strip()
        except (FileNotFoundError, PermissionError):
            continue
        if raw == "max":
            return
        try:
            limit = int(raw)
        except ValueError:
            return
        if limit < (1 << 60):  # Filter out "unlimited" values
            logger.info(
                "http.startup.container_memory_limit",
                extra={"limit_mb": round(limit / 1024 / 1024, 1)},
            )
        return


def _register_health(app: FastAPI) -> None:
    """Register health and readiness endpoints."""

    @app.get("/health", response_model=HealthResponse, summary="Liveness probe")
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/ready", response_model=HealthResponse, summary="Readiness probe")
    async def ready() -> HealthResponse:
        return HealthResponse(status="ready")


def _register_capabilities(app: FastAPI, server: QdrantMCPServer) -> None:
    """Register server capabilities endpoint."""
    context = server.context

    @app.get(
        "/capabilities",
        response_model=CapabilitiesResponse,
        summary="Server capabilities summary",
    )
    async def capabilities() -> CapabilitiesResponse:
        registry = context.registry
        token = context.settings.QDRANT_MCP_HTTP_TOKEN
        return CapabilitiesResponse(
            name=SERVER_NAME,
            version=__version__,
            transports=["stdio", "http", "streamable-http"],
            http_auth="enabled" if token else "disabled",
            tools=tool_names(),
            clusters=[p.public_dict() for p in registry.list_profiles()],
            active_cluster=registry.get_active(),
            rate_limit=context.limiter.describe(),
            cursor_signing=context.cursor_secret is not None,
            destructive_tools_disabled=context.destructive_tools_disabled,
        )


def _register_resources(app: FastAPI, server: QdrantMCPServer) -> None:
    """Register cluster resource endpoints."""
    resources = ClusterResourceRegistry(server.context)

    @app.get(
        "/resources",
        response_model=ResourceListResponse,
        summary="List cluster resources",
    )
    async def list_cluster_resources() -> ResourceListResponse:
        return ResourceListResponse(
            resources=[r.to_dict() for r in resources.list_resources()],
            resource_templates=resources.list_templates(),
        )

    @app.get(
        "/resources/clusters/{name}",
        response_model=ResourceReadResponse,
        summary="Read one cluster resource",
    )
    async def read_cluster_resource(name: str) -> ResourceReadResponse:
        uri = f"{URI_PREFIX}{name}"
        try:
            text = await resources.read_text(uri)
        except UnknownClusterError as exc:
            raise HTTPException(
                status_code=exc.http_status,
                detail=ErrorResponse(**exc.to_dict()).model_dump(),
            ) from exc
        return ResourceReadResponse(
            contents=[{"uri": uri, "mimeType": MIME_TYPE, "text": text}]
        )


def _register_tools(app: FastAPI, server: QdrantMCPServer, auth_dep: Any) -> None:
    """Register REST tool invocation endpoint."""

    @app.post(
        "/tools/{tool_name}",
        summary="Invoke a tool",
        dependencies=[Depends(auth_dep)],
        responses={
            400: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
            502: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
    )
    async def invoke_tool(
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = Body(default=None),
    ) -> Dict[str, Any]:
        result = await server.call_tool(tool_name, arguments or {})
        if result.is_error:
            raise HTTPException(
                status_code=result.status_code,
                detail=ErrorResponse(**result.payload).model_dump(),
            )
        return result.payload


def _register_exception_handlers(app: FastAPI) -> None:
    """Global exception handlers to ensure structured error responses."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Any, exc: Exception):
        err = ErrorResponse(detail=str(exc), error_type="validation_error")
        return JSONResponse(status_code=400, content={"detail": err.model_dump()})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Any, exc: Any):
        # Pass through existing HTTP errors but ensure structured payload
        detail = getattr(exc, "detail", "")
        if isinstance(detail, dict) and {"detail", "error_type"} <= detail.keys():
            payload = {"detail": detail}
        else:
            payload = {
                "detail": ErrorResponse(
                    detail=str(detail) or "HTTP error", error_type="http_error"
                ).model_dump()
            }
        return JSONResponse(
            status_code=exc.status_code,
            content=payload,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Any, exc: Exception):
        # Avoid leaking internals; log server-side, return generic error
        logger.error("http.unhandled_exception", exc_info=exc)
        err = ErrorResponse(
            detail="Internal error. See server logs for request id.",
            error_type="internal_server_error",
        )
        return JSONResponse(status_code=500, content={"detail": err.model_dump()})


def create_app(context: Optional[ServerContext] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    context: Optional[ServerContext]
        Shared registry/limiter state. Built from the environment when
        omitted.
    """
    if context is None:
        settings = EnvSettings()
        # Respect prior logging configuration from CLI; otherwise use env setting
        if not logging.getLogger().hasHandlers():
            setup_logging(settings.log_level)
        context = ServerContext.from_settings(settings)
    settings = context.settings

    server = QdrantMCPServer(context)
    session_manager = StreamableHTTPSessionManager(
        app=build_mcp_server(server),
        json_response=True,
        stateless=True,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        logger.info(
            "http.startup.settings",
            extra={
                "host": settings.HOST,
                "port": settings.PORT,
                "http_auth": bool(settings.QDRANT_MCP_HTTP_TOKEN),
                "cors_origins": _cors_origins(settings),
                "clusters": context.registry.names(),
                "active_cluster": context.registry.get_active(),
                "rate_limit": context.limiter.describe(),
            },
        )
        _log_startup_memory()
        await server.start()
        try:
            async with session_manager.run():
                yield
        finally:
            logger.info("http.shutdown")
            await server.stop()

    app = FastAPI(title="Qdrant MCP Server", version=__version__, lifespan=lifespan)
    app.state.mcp_server = server

    _register_exception_handlers(app)
    _apply_cors(app, settings)
    app.add_middleware(CorrelationIdMiddleware)

    auth_dep = _make_auth_dependency(settings.QDRANT_MCP_HTTP_TOKEN or None)
    _register_health(app)
    _register_capabilities(app, server)
    _register_resources(app, server)
    _register_tools(app, server, auth_dep)

    app.add_route(
        "/mcp",
        MCPHTTPEndpoint(session_manager),
        methods=["GET", "POST", "DELETE"],
        include_in_schema=False,
    )
    logger.info(
        "mcp.http.mounted",
        extra={"path": "/mcp", "transport": "streamable-http"},
    )
    return app
