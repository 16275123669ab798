"""
Pitch Market - FastAPI Application
==================================

Main application factory with all routers and middleware.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from pitchmarket.api import audit, clusters, invest, live, teams
from pitchmarket.api.deps import CurrentUser
from pitchmarket.core.config import settings
from pitchmarket.core.database import AsyncSessionLocal, close_db, init_db
from pitchmarket.core.errors import EngineError
from pitchmarket.core.schemas import CallerResponse, ErrorResponse, HealthResponse

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


# ==========================================================================
# Lifespan
# ==========================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Startup creates missing tables; shutdown closes database connections.
    """
    logger.info("Starting Pitch Market", version=settings.APP_VERSION)

    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down Pitch Market")
    await close_db()
    logger.info("Database connections closed")


# ==========================================================================
# App Factory
# ==========================================================================

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Pitch Market - Investment & Pitch Orchestration Engine",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    # ==========================================================================
    # Middleware
    # ==========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==========================================================================
    # Exception Handlers
    # ==========================================================================

    @app.exception_handler(EngineError)
    async def engine_exception_handler(request: Request, exc: EngineError) -> JSONResponse:
        """Render engine failures with their status and machine code."""
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "engine_error",
            code=exc.code,
            reason=exc.reason,
            path=request.url.path,
            method=request.method,
        )

        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.title,
                detail=exc.detail,
                code=exc.code,
                reason=exc.reason,
            ).model_dump(),
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

        if settings.is_development:
            detail = str(exc)
        else:
            detail = "An unexpected error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal Server Error",
                detail=detail,
                code="INTERNAL_ERROR",
            ).model_dump(),
        )

    # ==========================================================================
    # Routers
    # ==========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        """Check application and database health."""
        database = "connected"
        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
        except Exception:
            logger.warning("health_check_database_unreachable", exc_info=True)
            database = "unreachable"

        return HealthResponse(
            status="healthy" if database == "connected" else "degraded",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            database=database,
        )

    @app.get(
        f"{settings.API_V1_PREFIX}/me",
        response_model=CallerResponse,
        tags=["Caller"],
        summary="Resolved caller identity",
    )
    async def whoami(current_user: CurrentUser) -> CallerResponse:
        """Role, team and assigned cluster of the bearer token's user."""
        return CallerResponse.model_validate(current_user)

    # API v1 routes
    app.include_router(clusters.router, prefix=settings.API_V1_PREFIX)
    app.include_router(teams.router, prefix=settings.API_V1_PREFIX)
    app.include_router(invest.router, prefix=settings.API_V1_PREFIX)
    app.include_router(live.router, prefix=settings.API_V1_PREFIX)
    app.include_router(audit.router, prefix=settings.API_V1_PREFIX)

    # ==========================================================================
    # WebSocket Endpoints
    # ==========================================================================

    app.add_api_websocket_route(
        f"{settings.API_V1_PREFIX}/live/ws",
        live.live_websocket,
        name="live_websocket",
    )

    # ==========================================================================
    # Root Endpoint
    # ==========================================================================

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Root endpoint with API info."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs" if settings.is_development else "Disabled in production",
            "health": "/health",
            "api": settings.API_V1_PREFIX,
        }

    return app


# ==========================================================================
# Application Instance
# ==========================================================================

app = create_app()


# ==========================================================================
# Development Server
# ==========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pitchmarket.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level="info",
    )
