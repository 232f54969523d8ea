"""FastAPI application entry point."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import time
import uuid

from encore_console.config import Settings, settings as default_settings
from encore_console.core.exceptions import LocalGatewayError
from encore_console.core.logging import logger
from encore_console.core.proxy import ProxyGateway
from encore_console.core.token_provider import build_token_provider
from encore_console.api.routes import health, proxy, shell
from encore_console.models.responses import ErrorResponse


REQUEST_ID_HEADER = "X-Request-ID"


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[ProxyGateway] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Configuration, defaults to the environment
        gateway: Pre-built gateway, e.g. one wired to a fake backend

    Returns:
        Configured FastAPI application
    """
    settings = settings or default_settings
    if gateway is None:
        gateway = ProxyGateway(
            build_token_provider(settings),
            settings.encore_api_url,
            timeout=settings.request_timeout,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"Proxying to Encore API: {gateway.base_url}")
        logger.info(f"Authentication method: {gateway.token_provider.auth_method}")
        logger.info(f"CORS origins: {', '.join(settings.cors_origins)}")
        logger.info(f"Serving static files from: {settings.static_dir}")

        yield

        logger.info("Shutting down gateway...")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Authenticating gateway between the Encore console and the Encore API",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.gateway = gateway
    app.state.static_dir = settings.static_dir

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log each request with a correlation id, echoed in X-Request-ID."""
        started = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex

        def context(**fields):
            metadata = {"method": request.method, "path": request.url.path}
            metadata.update(fields)
            return {"request_id": request_id, "metadata": metadata}

        def elapsed_ms():
            return round((time.perf_counter() - started) * 1000, 2)

        logger.info(
            "Request started",
            extra=context(client=request.client.host if request.client else None),
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {e}",
                extra=context(duration_ms=elapsed_ms()),
                exc_info=True,
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "Request completed",
            extra=context(status_code=response.status_code, duration_ms=elapsed_ms()),
        )
        return response

    @app.exception_handler(LocalGatewayError)
    async def gateway_exception_handler(request: Request, exc: LocalGatewayError):
        """Handle failures in the gateway's own request handling."""
        logger.error(f"Gateway error: {exc}", exc_info=exc)

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="Internal server error", message=str(exc)).model_dump(exclude_none=True)
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger.error(f"Server error: {exc}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="Internal server error", message=str(exc)).model_dump(exclude_none=True)
        )

    # Order matters: the shell catch-all must come last
    app.include_router(health.router)
    app.include_router(proxy.router)
    app.include_router(shell.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "encore_console.main:app",
        host=default_settings.host,
        port=default_settings.port,
        workers=default_settings.workers if not default_settings.debug else 1,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower()
    )
