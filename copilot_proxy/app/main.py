"""
FastAPI Copilot Proxy Application Factory
=========================================

Entry point for the reverse proxy that sits between chat clients and the
local copilot service.

Architecture:
    Web/Mobile Clients → Copilot Proxy (this service) → Copilot sidecar (https://127.0.0.1:8443)

Routes:
    - GET  /health  : Health check endpoint (HEAD as well)
    - POST /chat    : Proxied to the copilot upstream (streamed)
    - POST /copilot : Same as /chat
    - GET  /*       : Static assets from STATIC_DIR, otherwise 404

Environment Variables:
    - PORT: Listening port (default: 3000)
    - HOST: Bind address (default: 0.0.0.0)
    - UPSTREAM_URL: Copilot endpoint (default: https://127.0.0.1:8443/copilot?chunked=true)
    - UPSTREAM_INSECURE_SKIP_VERIFY: Skip upstream TLS verification (default: true)
    - UPSTREAM_CONNECT_TIMEOUT / UPSTREAM_READ_TIMEOUT: Upstream timeouts in seconds
    - STATIC_DIR: Static asset directory (default: public)
    - ALLOWED_ORIGINS: Comma-separated CORS origins (default: *)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn copilot_proxy.app.main:create_app --factory --reload --port 3000

    Production:
        python -m copilot_proxy
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response

from .config import Settings, get_settings
from .middleware import AccessLogMiddleware, ErrorResponseMiddleware, SecurityHeadersMiddleware
from .models import ErrorResponse, HealthResponse, NotFoundResponse
from .proxy import CopilotForwarder, proxy_router

logger = logging.getLogger("copilot_proxy.main")

AVAILABLE_ENDPOINTS: Dict[str, str] = {
    "GET /health": "Health check",
    "POST /chat": "Send a chat message (proxies to copilot service)",
}

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def resolve_static_file(static_dir: Path, request_path: str) -> Optional[Path]:
    """
    Map a request path onto a file inside static_dir.

    Directories resolve to their index.html. Paths escaping static_dir
    resolve to None.
    """
    if not static_dir.is_dir():
        return None

    root = static_dir.resolve()
    candidate = (root / request_path.lstrip("/")).resolve()
    if candidate != root and root not in candidate.parents:
        return None
    if candidate.is_dir():
        candidate = candidate / "index.html"
    return candidate if candidate.is_file() else None


def not_found_response() -> JSONResponse:
    payload = NotFoundResponse(availableEndpoints=AVAILABLE_ENDPOINTS)
    return JSONResponse(status_code=404, content=payload.model_dump(by_alias=True))


async def internal_error_response(request: Request, exc: Exception) -> JSONResponse:
    """
    Global handler for unhandled errors.

    Logs the error and returns {error, message} with status 500.
    """
    logger.error(
        f"Unhandled error: {exc}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error", message=str(exc)).model_dump(),
    )


# Create FastAPI application
def create_app(
    settings: Optional[Settings] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan logging
        - Security header, CORS and access log middleware
        - Health, proxy and fallback routes
        - Global exception handler

    Args:
        settings: Frozen settings; loaded from the environment when omitted
        upstream_transport: Optional httpx transport for the upstream client

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    static_dir = Path(settings.STATIC_DIR)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)
        logger.info(f"Reverse proxy running on port {settings.PORT}")
        logger.info(f"Health check: http://localhost:{settings.PORT}/health")
        logger.info(
            f"Chat endpoint: http://localhost:{settings.PORT}/chat -> {settings.UPSTREAM_URL}",
            extra={"insecure_skip_verify": settings.UPSTREAM_INSECURE_SKIP_VERIFY},
        )
        if settings.UPSTREAM_INSECURE_SKIP_VERIFY:
            logger.warning("TLS certificate validation is disabled for the copilot upstream")
        yield
        logger.info("Reverse proxy shutdown complete")

    app = FastAPI(
        title="Copilot Proxy",
        description="Streaming reverse proxy for the copilot chat service",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.forwarder = CopilotForwarder(settings, transport=upstream_transport)

    # Last added runs first: access log wraps CORS wraps security headers
    # wraps the error responder
    app.add_middleware(ErrorResponseMiddleware, handler=internal_error_response)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AccessLogMiddleware)

    # Health check endpoint
    @app.api_route("/health", methods=["GET", "HEAD"], tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """
        Health check endpoint.

        Always answers, whether or not the upstream is reachable.
        """
        return HealthResponse()

    # Proxy router: /chat and /copilot
    app.include_router(proxy_router)

    # Static assets, then the routing miss payload
    @app.api_route("/{full_path:path}", methods=ALL_METHODS, include_in_schema=False)
    async def fallback(request: Request, full_path: str) -> Response:
        if request.method in ("GET", "HEAD"):
            static_file = resolve_static_file(static_dir, full_path)
            if static_file is not None:
                return FileResponse(static_file)

        logger.debug(f"No route for {request.method} {request.url.path}")
        return not_found_response()

    # Errors raised by the middleware layers themselves
    app.add_exception_handler(Exception, internal_error_response)

    return app


def run(settings: Optional[Settings] = None) -> None:
    """
    Run the proxy under uvicorn on HOST:PORT.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
