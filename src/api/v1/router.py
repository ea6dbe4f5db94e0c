from fastapi import APIRouter, Depends

from config import settings
from services.weather import WeatherService
from .dependencies import get_weather_service
from .icon_router import router as icon_router
from .weather_router import router as weather_router

router = APIRouter(prefix="/api/v1", tags=["v1"])
router.include_router(weather_router)
router.include_router(icon_router)


@router.get("/health")
async def health():
    return {"status": "ok", "version": settings.app_version}


@router.get("/info")
async def info(service: WeatherService = Depends(get_weather_service)):
    cache = service.cache
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "cors_origins": settings.cors_origins,
        "station": service.station,
        "cache_ttl_minutes": settings.weather_cache_ttl_minutes,
        "cache_storage": cache.storage.name,
        "cache_durable": cache.storage.durable,
        "cache_state": cache.state().value,
    }
