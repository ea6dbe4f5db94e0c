from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from fastapi import APIRouter, Query, Response
from fastapi.responses import JSONResponse

from config import settings
from services.conditions import ICON_NAMES
from .weather_router import CORS_HEADERS

logger = logging.getLogger("metar_relay.hub.icons")

router = APIRouter(prefix="/weather/icon", tags=["weather"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=CORS_HEADERS)


@router.get("")
async def get_icon(name: str | None = Query(default=None, description="Icon identifier")) -> Response:
    if not name:
        return _error(400, "name query param required")
    # Allow-list only, so the name can never address a path outside the icon directory.
    if name not in ICON_NAMES:
        return _error(404, "icon not found")

    path = Path(settings.weather_icons_dir) / f"{name}.svg"
    try:
        svg = await asyncio.to_thread(path.read_text, encoding="utf-8")
    except OSError as exc:
        logger.error("Failed to read weather icon %s: %s", path, exc)
        return _error(500, "failed to read icon")
    return Response(content=svg, media_type="image/svg+xml", headers=CORS_HEADERS)


@router.options("")
async def icon_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)
