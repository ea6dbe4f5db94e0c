from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging, time

from config import settings
from api.legacy_router import legacy_router
from api.v1.router import router as v1_router
from services.errors import WeatherServiceError
from services.weather import WeatherService, build_weather_service

logger = logging.getLogger("metar_relay.hub")
if not logger.handlers:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(weather_service: WeatherService | None = None) -> FastAPI:
    app = FastAPI(title=settings.app_name, version=settings.app_version)
    app.state.weather_service = weather_service or build_weather_service(settings)

    allow_all = "*" in settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        if allow_all:
            response.headers.setdefault("Access-Control-Allow-Origin", "*")
        dur_ms = (time.perf_counter() - start) * 1000.0
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, dur_ms)
        return response

    @app.exception_handler(WeatherServiceError)
    async def weather_error_handler(request: Request, exc: WeatherServiceError):
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse({"error": "Internal error", "message": str(exc)}, status_code=500)

    @app.get("/", tags=["meta"])
    async def root():
        return {"name": settings.app_name, "version": settings.app_version}

    @app.get("/health", tags=["meta"])
    async def health():
        return JSONResponse({"status": "ok", "version": settings.app_version})

    app.include_router(v1_router)
    app.include_router(legacy_router)

    @app.on_event("startup")
    async def _startup():
        service: WeatherService = app.state.weather_service
        await service.cache.load()
        logger.info(
            "Serving METAR for %s (cache: %s, ttl %.0f min)",
            service.station,
            service.cache.storage.name,
            settings.weather_cache_ttl_minutes,
        )

    @app.on_event("shutdown")
    async def _shutdown():
        await app.state.weather_service.close()

    return app


app = create_app()
