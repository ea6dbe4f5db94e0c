from __future__ import annotations

from fastapi import HTTPException, Query, Request, status

from services.weather import WeatherService


def get_weather_service(request: Request) -> WeatherService:
    service = getattr(request.app.state, "weather_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Weather service not initialised")
    return service


def parse_force(force: str | None = Query(default=None, description="'true' or '1' bypasses the cache")) -> bool:
    if force is None:
        return False
    return force.strip().lower() in ("true", "1")
