"""
Health check endpoint.

Provides system health status for monitoring and load balancers.
"""

from fastapi import APIRouter

from pintae import __version__
from pintae.api.schemas import HealthResponse
from pintae.config import get_settings
from pintae.domain.builtin_checks import BUILTIN_CHECKS
from pintae.domain.check_pack import UAE_UC1_CHECK_PACK
from pintae.domain.conformance import SPEC_VERSION_LABEL
from pintae.registry.controls import get_controls_registry

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Check system health.

    Reports the loaded rule and control counts so a deployment with a
    broken registry is visible to monitoring.
    """
    settings = get_settings()

    return HealthResponse(
        status="healthy",
        version=__version__,
        registry_version=settings.registry_version,
        spec_version=SPEC_VERSION_LABEL,
        builtin_checks=len(BUILTIN_CHECKS),
        pack_rules=len(UAE_UC1_CHECK_PACK),
        controls=len(get_controls_registry()),
    )
