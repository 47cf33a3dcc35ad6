"""
Health check endpoint.

Provides system health status for monitoring and load balancers.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from medverify import __version__
from medverify.api.dependencies import get_service
from medverify.api.schemas import HealthResponse
from medverify.config import get_settings
from medverify.services.verification import VerificationService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    service: Annotated[VerificationService, Depends(get_service)],
) -> HealthResponse:
    """
    Check system health.

    Returns status of core components for monitoring dashboards
    and load balancer health checks.
    """
    settings = get_settings()

    return HealthResponse(
        status="healthy",
        version=__version__,
        storage_backend=settings.storage_backend,
        batches=len(service.document.batches),
    )
