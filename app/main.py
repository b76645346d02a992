"""
Decomp Pipeline API - Main Application
HTTP interface for the assembly → C → compile → verify pipeline.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import Settings, settings as default_settings
from app.context import build_context
from app.routers import pipeline

_log = logging.getLogger(__name__)


# =============================================================================
# Lifespan Event Handler
# =============================================================================

def build_lifespan(settings: Settings):
    """Create a lifespan context manager bound to provided settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _log.info("Starting %s %s", settings.API_TITLE, settings.API_VERSION)
        ctx = build_context(settings)
        app.state.settings = settings
        app.state.ctx = ctx

        yield

        active = ctx.coordinator.active_runs()
        for run_id in active:
            ctx.coordinator.cancel(run_id)
        if active:
            _log.info("Cancelled %d in-flight run(s) on shutdown", len(active))
        await ctx.close()
        _log.info("%s stopped", settings.API_TITLE)

    return lifespan


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    if settings.DEBUG:
        logging.getLogger("decomp_pipeline").setLevel(logging.DEBUG)

    app = FastAPI(
        title=settings.API_TITLE,
        description="Decompilation pipeline: Generate → Compile → Verify",
        version=settings.API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=build_lifespan(settings),
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Return 422 with structured error details."""
        body = await request.body()
        _log.warning(
            "422 on %s %s  body[:200]=%s  errors=%s",
            request.method, request.url.path, body[:200], exc.errors()[:3],
        )
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "decomp-pipeline-api",
            "version": settings.API_VERSION,
        }

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "Decomp Pipeline API - Assembly to C",
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(pipeline.router, prefix="/pipeline", tags=["pipeline"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=default_settings.API_HOST,
        port=default_settings.API_PORT,
        reload=True  # For development
    )
