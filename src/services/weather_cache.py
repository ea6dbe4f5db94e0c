from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set, Tuple

from services.humidity import relative_humidity
from services.metar import CloudLayer, Observation, Wind, decode_metar, extract_report
from services.snapshot_storage import SnapshotStorage

logger = logging.getLogger("metar_relay.hub.weather_cache")

DEFAULT_TTL_SECONDS = 30 * 60


class CacheState(str, enum.Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


def _opt_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _timestamp_ms(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(int(value), 0)


@dataclass(slots=True)
class CacheEntry:
    """The accepted observation for the station, as served to clients.

    Fields stay ``None`` when unknown; entries loaded from older snapshots may lack
    decoded fields until :meth:`backfill` restores them from ``metar``.
    """

    metar: str
    raw: Optional[str] = None
    station: Optional[str] = None
    obs_time: Optional[str] = None
    obs_local_time: Optional[str] = None
    wind: Optional[Wind] = None
    visibility: Optional[str] = None
    clouds: Optional[Tuple[CloudLayer, ...]] = None
    weather: Optional[Tuple[str, ...]] = None
    temperature_c: Optional[int] = None
    dew_point_c: Optional[int] = None
    qnh_hpa: Optional[int] = None
    alt_inhg: Optional[str] = None
    temperature: Optional[int] = None
    dew_point: Optional[int] = None
    humidity: Optional[int] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_observation(cls, metar: str, observation: Observation, *, updated_at: str) -> "CacheEntry":
        return cls(
            metar=metar,
            raw=observation.raw,
            station=observation.station,
            obs_time=observation.obs_time,
            obs_local_time=observation.obs_local_time,
            wind=observation.wind,
            visibility=observation.visibility,
            clouds=observation.clouds,
            weather=observation.weather,
            temperature_c=observation.temperature_c,
            dew_point_c=observation.dew_point_c,
            qnh_hpa=observation.qnh_hpa,
            alt_inhg=observation.alt_inhg,
            temperature=observation.temperature_c,
            dew_point=observation.dew_point_c,
            humidity=relative_humidity(observation.temperature_c, observation.dew_point_c),
            updated_at=updated_at,
        )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional["CacheEntry"]:
        metar = payload.get("metar")
        if not isinstance(metar, str) or not metar.strip():
            return None
        clouds_payload = payload.get("clouds")
        clouds: Optional[Tuple[CloudLayer, ...]] = None
        if isinstance(clouds_payload, list):
            parsed = [CloudLayer.from_payload(item) for item in clouds_payload]
            clouds = tuple(layer for layer in parsed if layer is not None)
        weather_payload = payload.get("weather")
        weather: Optional[Tuple[str, ...]] = None
        if isinstance(weather_payload, list):
            tokens = tuple(token for token in weather_payload if isinstance(token, str) and token)
            weather = tokens or None
        qnh_hpa = _opt_int(payload.get("qnh_hpa"))
        return cls(
            metar=metar,
            raw=_opt_str(payload.get("raw")),
            station=_opt_str(payload.get("station")),
            obs_time=_opt_str(payload.get("obsTime")),
            obs_local_time=_opt_str(payload.get("obsLocalTime")),
            wind=Wind.from_payload(payload.get("wind")),
            visibility=_opt_str(payload.get("visibility")),
            clouds=clouds,
            weather=weather,
            temperature_c=_opt_int(payload.get("temperatureC")),
            dew_point_c=_opt_int(payload.get("dewPointC")),
            qnh_hpa=qnh_hpa,
            alt_inhg=_opt_str(payload.get("alt_inhg")) if qnh_hpa is None else None,
            temperature=_opt_int(payload.get("temperature")),
            dew_point=_opt_int(payload.get("dewPoint")),
            humidity=_opt_int(payload.get("humidity")),
            updated_at=_opt_str(payload.get("updatedAt")),
        )

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "metar": self.metar,
            "raw": self.raw,
            "station": self.station,
            "obsTime": self.obs_time,
            "obsLocalTime": self.obs_local_time,
            "wind": self.wind.to_payload() if self.wind else None,
            "visibility": self.visibility,
            "clouds": [layer.to_payload() for layer in self.clouds] if self.clouds is not None else None,
            "weather": list(self.weather) if self.weather else None,
            "temperatureC": self.temperature_c,
            "dewPointC": self.dew_point_c,
        }
        if self.qnh_hpa is not None:
            payload["qnh_hpa"] = self.qnh_hpa
        elif self.alt_inhg is not None:
            payload["alt_inhg"] = self.alt_inhg
        payload.update(
            {
                "temperature": self.temperature,
                "dewPoint": self.dew_point,
                "humidity": self.humidity,
                "updatedAt": self.updated_at,
            }
        )
        return payload

    def backfill(self, observation: Observation) -> bool:
        """Fill fields missing from this entry with values from ``observation``.

        Fields already present are never overwritten. Returns True when anything changed.
        """
        before = dataclasses.astuple(self)

        self.raw = self.raw or observation.raw or None
        self.station = self.station or observation.station
        self.obs_time = self.obs_time or observation.obs_time
        self.obs_local_time = self.obs_local_time or observation.obs_local_time
        self.wind = self.wind or observation.wind
        self.visibility = self.visibility or observation.visibility
        if self.clouds is None:
            self.clouds = observation.clouds
        self.weather = self.weather or observation.weather
        if self.temperature_c is None:
            self.temperature_c = observation.temperature_c
        if self.dew_point_c is None:
            self.dew_point_c = observation.dew_point_c
        if self.temperature is None:
            self.temperature = self.temperature_c
        if self.dew_point is None:
            self.dew_point = self.dew_point_c
        if self.qnh_hpa is None and self.alt_inhg is None:
            self.qnh_hpa = observation.qnh_hpa
            self.alt_inhg = observation.alt_inhg
        if self.humidity is None:
            self.humidity = relative_humidity(self.temperature, self.dew_point)

        return dataclasses.astuple(self) != before


class WeatherCache:
    """Single-slot cache of the latest accepted observation.

    Holds the entry, the raw report it came from and the fetch timestamp
    (milliseconds since epoch). Every state change schedules a background write of
    the snapshot to the configured storage; write failures are only logged.
    """

    def __init__(
        self,
        storage: SnapshotStorage,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        offset_hours: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._ttl_ms = int(ttl_seconds * 1000)
        self._offset_hours = offset_hours
        self._clock = clock
        self._entry: Optional[CacheEntry] = None
        self._cached_metar: Optional[str] = None
        self._cached_at = 0
        self._lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._pending: Set[asyncio.Task[None]] = set()
        self._persist_seq = 0
        self._written_seq = 0

    @property
    def storage(self) -> SnapshotStorage:
        return self._storage

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    @property
    def cached_metar(self) -> Optional[str]:
        return self._cached_metar

    @property
    def cached_at(self) -> int:
        return self._cached_at

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def state(self, now_ms: Optional[int] = None) -> CacheState:
        if self._entry is None:
            return CacheState.EMPTY
        now = self.now_ms() if now_ms is None else now_ms
        if now - self._cached_at < self._ttl_ms:
            return CacheState.FRESH
        return CacheState.STALE

    def is_fresh(self, now_ms: Optional[int] = None) -> bool:
        return self.state(now_ms) is CacheState.FRESH

    def peek(self) -> Optional[CacheEntry]:
        entry = self._entry
        return dataclasses.replace(entry) if entry is not None else None

    async def load(self) -> None:
        """Restore the cache from storage and back-fill fields missing from older snapshots."""
        payload = await self._storage.load()
        async with self._lock:
            self._entry = None
            self._cached_metar = None
            self._cached_at = 0
            if payload:
                entry_payload = payload.get("cached")
                if isinstance(entry_payload, dict):
                    self._entry = CacheEntry.from_payload(entry_payload)
                self._cached_metar = _opt_str(payload.get("cachedMetar"))
                self._cached_at = _timestamp_ms(payload.get("cachedAt"))
            if self._normalize_locked():
                self._schedule_persist_locked()
        if self._entry is not None:
            logger.info("Loaded cached METAR for %s (cachedAt=%s)", self._entry.station, self._cached_at)

    async def read_fresh(self, now_ms: Optional[int] = None) -> Optional[CacheEntry]:
        """Return the normalized entry while it is fresh, otherwise ``None``."""
        async with self._lock:
            if not self.is_fresh(now_ms):
                return None
            if self._normalize_locked():
                self._schedule_persist_locked()
            return self.peek()

    async def apply(self, entry: CacheEntry, *, fetched_at: Optional[int] = None) -> Tuple[CacheEntry, bool]:
        """Store a freshly fetched entry using the replace-vs-touch rule.

        A report that differs from the stored one (or any report on an empty cache)
        replaces the entry; an identical report only advances the fetch timestamp
        and the stored entry is returned unchanged. Returns ``(entry, changed)``.
        """
        timestamp = self.now_ms() if fetched_at is None else fetched_at
        async with self._lock:
            if self._entry is not None and entry.metar == self._cached_metar:
                self._cached_at = timestamp
                self._schedule_persist_locked()
                return self.peek(), False  # type: ignore[return-value]
            self._entry = dataclasses.replace(entry)
            self._cached_metar = entry.metar
            self._cached_at = timestamp
            self._schedule_persist_locked()
            return self.peek(), True  # type: ignore[return-value]

    def snapshot(self) -> Dict[str, Any]:
        return {
            "cached": self._entry.to_payload() if self._entry is not None else None,
            "cachedMetar": self._cached_metar,
            "cachedAt": self._cached_at,
        }

    async def flush(self) -> None:
        """Wait for scheduled snapshot writes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _normalize_locked(self) -> bool:
        entry = self._entry
        if entry is None or not entry.metar:
            return False
        report = extract_report(entry.metar)
        observation = decode_metar(report, offset_hours=self._offset_hours)
        changed = entry.backfill(observation)
        if not entry.raw:
            entry.raw = report
            changed = True
        if not self._cached_metar:
            self._cached_metar = entry.metar
            changed = True
        return changed

    def _schedule_persist_locked(self) -> None:
        self._persist_seq += 1
        seq = self._persist_seq
        payload = self.snapshot()
        task = asyncio.get_running_loop().create_task(self._persist(seq, payload), name="weather-cache-persist")
        self._pending.add(task)
        task.add_done_callback(self._on_persist_done)

    async def _persist(self, seq: int, payload: Dict[str, Any]) -> None:
        async with self._write_lock:
            if seq < self._written_seq:
                return
            try:
                await self._storage.save(payload)
            except OSError as exc:
                logger.warning("Failed to persist weather cache snapshot: %s", exc)
                return
            self._written_seq = seq

    def _on_persist_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Weather cache persistence task failed", exc_info=exc)


__all__ = ["CacheEntry", "CacheState", "WeatherCache"]
