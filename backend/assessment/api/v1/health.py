"""
Health check endpoint.
"""
from fastapi import APIRouter

from assessment.core import settings
from assessment.core.datetime_utils import utc_now

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns basic health status of the reference collaborator.
    """
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }
