"""
API package for the Serra automation backend.

Aggregates the versioned routers included in the FastAPI application.
"""

from fastapi import APIRouter
from .v1.health import router as health_router
from .v1.readings import router as readings_router
from .v1.rules import router as rules_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(readings_router)
api_router.include_router(rules_router)
