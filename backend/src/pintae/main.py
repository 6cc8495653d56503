"""
FastAPI application entry point.

This is the main application that ties together all components:
- API routes for compliance runs, mapping coverage and registries
- Registry warm-up and consistency check at startup
- CORS configuration for frontend access
- Error handling and logging
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pintae import __version__
from pintae.api.routes import checks, coverage, health, registry
from pintae.config import get_settings
from pintae.services.conformance import run_consistency_checks

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the registries once and reports any inconsistency between the
    DR registry, the check pack and the controls.
    """
    settings = get_settings()

    logger.info(f"Starting PINT-AE compliance engine v{__version__}")
    logger.info(f"Registry version: {settings.registry_version}")
    logger.info(f"Default direction: {settings.default_direction}")
    logger.info(f"Monetary tolerance: {settings.monetary_tolerance}")
    logger.info(f"Debug mode: {settings.debug}")

    report = run_consistency_checks()
    for issue in report.issues:
        logger.info(f"Registry consistency [{issue.level.value}] {issue.category}: {issue.message}")

    yield  # Application runs here

    logger.info("Shutting down PINT-AE compliance engine")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance ready to serve requests.
    """
    settings = get_settings()

    app = FastAPI(
        title="PINT-AE Compliance API",
        description=(
            "UAE PINT-AE e-invoice compliance engine.\n\n"
            "Validates invoice datasets against built-in checks and the "
            "UC1 check pack, and reports mapping coverage and DR traceability."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(health.router)
    app.include_router(checks.router, prefix="/api/v1")
    app.include_router(coverage.router, prefix="/api/v1")
    app.include_router(registry.router, prefix="/api/v1")

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler for unhandled errors."""
        logger.exception(f"Unhandled error: {exc}")

        # Don't expose internal errors in production
        if settings.debug:
            detail = str(exc)
        else:
            detail = "An internal error occurred"

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "detail": detail,
            },
        )

    return app


# Create the application instance
app = create_app()


# Development server entry point
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pintae.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
