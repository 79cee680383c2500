"""FastAPI application entry point.

Factiony API - social cataloguing for video games.
"""

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from factiony.routes import api_router
from factiony.routes.deps import ApiError, get_coordinator
from factiony.schemas import HealthResponse
from factiony.services.coordinator import Coordinator
from factiony.settings import get_settings

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Builds both store adapters and the Coordinator on startup (unless one
    was installed already) and closes them on shutdown.
    """
    # Startup
    owned = getattr(app.state, "coordinator", None) is None
    if owned:
        app.state.coordinator = Coordinator.from_settings(get_settings())

    health = await app.state.coordinator.health_check()
    if not health.relational:
        logger.error("Relational store unreachable at startup")
    if not health.document:
        logger.warning("Document store unreachable at startup, running degraded")

    yield

    # Shutdown
    if owned:
        await app.state.coordinator.aclose()
        app.state.coordinator = None


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Persistence coordination for the Factiony game platform",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.coordinator = None

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"code": exc.code, "message": exc.message, "detail": exc.detail}},
        )

    # Exception handler for structured error format
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler returning structured error format."""
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": str(exc) if settings.debug else "Internal server error",
                    "detail": None,
                }
            },
        )

    # Health check endpoint
    @app.get("/health", tags=["health"], response_model=HealthResponse)
    async def health_check(request: Request) -> JSONResponse:
        """Store health. 503 when neither store answers."""
        status = await get_coordinator(request).health_check()
        return JSONResponse(status_code=200 if status.overall else 503, content=status.as_dict())

    # Include API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "factiony.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
