"""
FastAPI application entry point.

This is the main application that ties together all components:
- API routes for registration, supply chain, verification and admin
- State store lifecycle (load or bootstrap on startup, close on shutdown)
- CORS configuration for frontend access
- Error handling and logging
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from medverify import __version__
from medverify.api.routes import admin, batches, health, supply_chain, verification
from medverify.config import get_settings
from medverify.services.verification import VerificationService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(service: VerificationService | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Pre-built verification service. Built from settings if None.

    Returns:
        Configured FastAPI instance ready to serve requests.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Loads (or bootstraps) the state document on startup and releases
        the storage backend on shutdown.
        """
        logger.info(f"Starting MedVerify v{__version__}")
        logger.info(f"Storage backend: {settings.storage_backend}")
        logger.info(f"Debug mode: {settings.debug}")

        app.state.service = service or VerificationService.from_settings(settings)
        await app.state.service.start()

        yield  # Application runs here

        # Shutdown
        logger.info("Shutting down MedVerify")
        await app.state.service.close()

    app = FastAPI(
        title="MedVerify API",
        description=(
            "Pharmaceutical batch registration and authenticity verification.\n\n"
            "Manufacturers register batches with a content proof, distributors "
            "and pharmacies record custody, and end users verify packs with a "
            "QR link and scratch code."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS configuration
    # In production, replace with specific allowed origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else ["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(health.router)
    app.include_router(batches.router, prefix="/api/v1")
    app.include_router(supply_chain.router, prefix="/api/v1")
    app.include_router(verification.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

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
        "medverify.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
