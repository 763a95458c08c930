"""
API v1 router combining all v1 endpoints.
"""
from fastapi import APIRouter

from assessment.api.v1 import attempts, health

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(attempts.router, tags=["attempts"])
