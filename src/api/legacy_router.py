"""Unversioned ``/api/weather`` paths for older clients."""

from fastapi import APIRouter

from .v1.icon_router import router as icon_router
from .v1.weather_router import router as weather_router

legacy_router = APIRouter(prefix="/api", include_in_schema=False)
legacy_router.include_router(weather_router)
legacy_router.include_router(icon_router)
