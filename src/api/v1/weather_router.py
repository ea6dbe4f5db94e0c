from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from services.weather import WeatherService
from .dependencies import get_weather_service, parse_force

router = APIRouter(prefix="/weather", tags=["weather"])

CORS_HEADERS = {
	"Access-Control-Allow-Origin": "*",
	"Access-Control-Allow-Methods": "GET, OPTIONS",
	"Access-Control-Allow-Headers": "Content-Type",
}


@router.get("")
async def get_weather(
	force: bool = Depends(parse_force),
	service: WeatherService = Depends(get_weather_service),
) -> dict[str, object]:
	"""Latest decoded METAR for the configured station.

	Served from cache while fresh unless ``force`` is set. ``cached`` is false only
	when this request stored a new report.
	"""
	result = await service.get_observation(force=force)
	return result.to_payload()


@router.options("")
async def weather_preflight() -> Response:
	return Response(status_code=200, headers=CORS_HEADERS)
