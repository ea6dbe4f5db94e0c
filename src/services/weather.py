import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from services.conditions import classify_conditions
from services.errors import InternalError, MalformedReport, WeatherServiceError
from services.metar import decode_metar, extract_report
from services.redemet import RedemetClient
from services.snapshot_storage import build_snapshot_storage
from services.weather_cache import CacheEntry, WeatherCache

logger = logging.getLogger("metar_relay.hub.weather")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class WeatherResult:
    entry: CacheEntry
    cached: bool

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {"cached": self.cached}
        payload.update(self.entry.to_payload())
        payload["icon"] = classify_conditions(self.entry.weather, self.entry.clouds)
        return payload


class WeatherService:
    """Serves the station's latest observation, refetching only when the cache is stale or forced."""

    def __init__(
        self,
        cache: WeatherCache,
        client: RedemetClient,
        *,
        station: str,
        offset_hours: int = 3,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._cache = cache
        self._client = client
        self._station = station.upper()
        self._offset_hours = offset_hours
        self._clock = clock
        self._inflight: Optional[asyncio.Task[WeatherResult]] = None

    @property
    def cache(self) -> WeatherCache:
        return self._cache

    @property
    def station(self) -> str:
        return self._station

    async def close(self) -> None:
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            await asyncio.gather(inflight, return_exceptions=True)
        await self._client.close()
        await self._cache.flush()

    async def get_observation(self, force: bool = False) -> WeatherResult:
        if not force:
            entry = await self._cache.read_fresh()
            if entry is not None:
                return WeatherResult(entry=entry, cached=True)

        try:
            return await self._refresh_shared()
        except WeatherServiceError:
            raise
        except Exception as exc:  # noqa: BLE001 - surfaced as a structured 500
            logger.exception("Unexpected failure while refreshing METAR")
            raise InternalError(str(exc)) from exc

    def local_clock(self, now: datetime) -> datetime:
        """UTC time shifted by the fixed clock offset, as used for report times and the provider day."""
        return now.astimezone(timezone.utc) + timedelta(hours=self._offset_hours)

    async def _refresh_shared(self) -> WeatherResult:
        # Concurrent stale or forced requests share one upstream call.
        task = self._inflight
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._refresh(), name="metar-refresh")
            task.add_done_callback(self._on_refresh_done)
            self._inflight = task
        else:
            logger.debug("Joining in-flight METAR refresh")
        return await asyncio.shield(task)

    def _on_refresh_done(self, task: asyncio.Task[WeatherResult]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark the outcome retrieved even if every waiter went away.
            task.exception()

    async def _refresh(self) -> WeatherResult:
        now = self._clock()
        metar = await self._client.fetch_report(self._station, self.local_clock(now).date())
        # Decode from the report marker on, the same way cached entries are normalized.
        observation = decode_metar(extract_report(metar), now=now, offset_hours=self._offset_hours)
        if observation.temperature_c is None:
            logger.warning("Discarding METAR without temperature group: %r", metar)
            raise MalformedReport(metar)

        updated_at = self.local_clock(now).strftime("%H:%M")
        entry = CacheEntry.from_observation(metar, observation, updated_at=updated_at)
        stored, changed = await self._cache.apply(entry)
        if changed:
            logger.info("METAR updated for %s: %s", self._station, metar)
        else:
            logger.debug("METAR unchanged for %s; refreshed cache timestamp", self._station)
        return WeatherResult(entry=stored, cached=not changed)


def build_weather_service(settings, *, transport=None) -> WeatherService:
    """Wire the cache, snapshot storage and upstream client described by ``settings``."""
    cache = WeatherCache(
        build_snapshot_storage(settings),
        ttl_seconds=settings.weather_cache_ttl_minutes * 60.0,
        offset_hours=settings.clock_offset_hours,
    )
    client = RedemetClient(
        base_url=settings.metar_base_url,
        user_agent=settings.metar_user_agent,
        timeout=settings.metar_request_timeout,
        transport=transport,
    )
    return WeatherService(
        cache,
        client,
        station=settings.station_code,
        offset_hours=settings.clock_offset_hours,
    )
