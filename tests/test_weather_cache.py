import dataclasses
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from conftest import SAMPLE_METAR, UPDATED_METAR
from services.metar import Wind, decode_metar
from services.snapshot_storage import (
    EphemeralSnapshotStorage,
    FileSnapshotStorage,
    SnapshotStorage,
    build_snapshot_storage,
)
from services.weather_cache import CacheEntry, CacheState, WeatherCache

NOW = datetime(2026, 10, 18, 22, 30, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)

pytestmark = pytest.mark.anyio


class _FailingStorage(SnapshotStorage):
    name = "failing"

    async def load(self):
        return None

    async def save(self, payload):
        raise OSError("read-only file system")


def _entry(metar: str = SAMPLE_METAR, updated_at: str = "19:30") -> CacheEntry:
    return CacheEntry.from_observation(metar, decode_metar(metar, now=NOW), updated_at=updated_at)


def _cache(storage: SnapshotStorage, clock=lambda: NOW.timestamp()) -> WeatherCache:
    return WeatherCache(storage, ttl_seconds=30 * 60, clock=clock)


async def test_apply_replaces_then_touches(snapshot_path: Path) -> None:
    now = {"value": NOW.timestamp()}
    cache = _cache(FileSnapshotStorage(snapshot_path), clock=lambda: now["value"])

    stored, changed = await cache.apply(_entry())
    assert changed is True
    assert stored.metar == SAMPLE_METAR
    assert cache.cached_at == NOW_MS

    now["value"] += 600
    stored, changed = await cache.apply(_entry(updated_at="19:40"))
    assert changed is False
    # Identical report keeps the stored entry and only moves the timestamp.
    assert stored.updated_at == "19:30"
    assert cache.cached_at == NOW_MS + 600_000

    stored, changed = await cache.apply(_entry(UPDATED_METAR, updated_at="19:50"))
    assert changed is True
    assert stored.metar == UPDATED_METAR
    assert stored.humidity == 83
    assert cache.cached_metar == UPDATED_METAR

    await cache.flush()


async def test_state_follows_ttl() -> None:
    cache = _cache(EphemeralSnapshotStorage())
    assert cache.state() is CacheState.EMPTY
    assert await cache.read_fresh() is None

    await cache.apply(_entry(), fetched_at=NOW_MS)

    assert cache.state(NOW_MS + 29 * 60_000) is CacheState.FRESH
    assert cache.state(NOW_MS + 30 * 60_000) is CacheState.STALE
    assert await cache.read_fresh(NOW_MS + 31 * 60_000) is None

    fresh = await cache.read_fresh(NOW_MS + 60_000)
    assert fresh is not None and fresh.metar == SAMPLE_METAR
    await cache.flush()


async def test_peek_returns_a_copy() -> None:
    cache = _cache(EphemeralSnapshotStorage())
    await cache.apply(_entry())

    copy = cache.peek()
    copy.humidity = 1
    assert cache.peek().humidity == 69
    await cache.flush()


async def test_snapshot_written_to_disk(snapshot_path: Path) -> None:
    cache = _cache(FileSnapshotStorage(snapshot_path))
    await cache.apply(_entry())
    await cache.flush()

    stored = json.loads(snapshot_path.read_text(encoding="utf-8"))
    assert stored["cachedMetar"] == SAMPLE_METAR
    assert stored["cachedAt"] == NOW_MS
    assert stored["cached"]["station"] == "SBRP"
    assert stored["cached"]["qnh_hpa"] == 1015
    assert stored["cached"]["clouds"] == [{"type": "FEW", "heightFt": 2000, "modifier": None}]


async def test_read_fresh_backfills_and_persists(snapshot_path: Path) -> None:
    cache = _cache(FileSnapshotStorage(snapshot_path))
    await cache.apply(dataclasses.replace(_entry(), station=None, wind=None, humidity=None))
    await cache.flush()
    stored = json.loads(snapshot_path.read_text(encoding="utf-8"))
    assert stored["cached"]["station"] is None

    entry = await cache.read_fresh()
    await cache.flush()

    assert entry.station == "SBRP"
    assert entry.wind == Wind(dir="090", speed_kt=8)
    assert entry.humidity == 69
    assert cache.peek() == entry
    stored = json.loads(snapshot_path.read_text(encoding="utf-8"))
    assert stored["cached"]["station"] == "SBRP"
    assert stored["cached"]["wind"] == {"dir": "090", "speedKt": 8, "gustKt": None}
    assert stored["cached"]["humidity"] == 69


async def test_load_missing_file_starts_empty(snapshot_path: Path) -> None:
    cache = _cache(FileSnapshotStorage(snapshot_path))
    await cache.load()

    assert cache.state() is CacheState.EMPTY
    assert cache.cached_at == 0
    assert not snapshot_path.exists()


async def test_load_round_trip(snapshot_path: Path) -> None:
    first = _cache(FileSnapshotStorage(snapshot_path))
    await first.apply(_entry(UPDATED_METAR))
    await first.flush()

    second = _cache(FileSnapshotStorage(snapshot_path))
    await second.load()

    assert second.cached_metar == UPDATED_METAR
    assert second.cached_at == NOW_MS
    assert second.peek() == first.peek()


async def test_load_backfills_legacy_snapshot(snapshot_path: Path) -> None:
    legacy_metar = "2025101218 - METAR SBRP 121800Z 09008KT 9999 FEW020 24/18 Q1015="
    snapshot_path.parent.mkdir(parents=True)
    snapshot_path.write_text(
        json.dumps(
            {
                "cached": {
                    "metar": legacy_metar,
                    "temperature": 24,
                    "dewPoint": 18,
                    "humidity": 69,
                    "updatedAt": "15:10",
                },
                "cachedAt": 1_760_000_000_000,
            }
        ),
        encoding="utf-8",
    )

    cache = _cache(FileSnapshotStorage(snapshot_path))
    await cache.load()
    await cache.flush()

    entry = cache.peek()
    assert entry.raw == "METAR SBRP 121800Z 09008KT 9999 FEW020 24/18 Q1015="
    assert entry.station == "SBRP"
    assert entry.obs_time == "121800Z"
    assert entry.temperature_c == 24
    assert entry.dew_point_c == 18
    assert entry.qnh_hpa == 1015
    assert entry.updated_at == "15:10"
    assert cache.cached_metar == legacy_metar
    assert cache.cached_at == 1_760_000_000_000

    stored = json.loads(snapshot_path.read_text(encoding="utf-8"))
    assert stored["cachedMetar"] == legacy_metar
    assert stored["cached"]["wind"] == {"dir": "090", "speedKt": 8, "gustKt": None}


async def test_load_ignores_corrupt_snapshot(snapshot_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    snapshot_path.parent.mkdir(parents=True)
    snapshot_path.write_text("{not json", encoding="utf-8")

    cache = _cache(FileSnapshotStorage(snapshot_path))
    with caplog.at_level(logging.WARNING, logger="metar_relay.hub.snapshot_storage"):
        await cache.load()

    assert cache.state() is CacheState.EMPTY
    assert "Failed to load weather cache snapshot" in caplog.text


async def test_load_drops_unusable_entry(snapshot_path: Path) -> None:
    snapshot_path.parent.mkdir(parents=True)
    snapshot_path.write_text(json.dumps({"cached": {"metar": ""}, "cachedAt": "soon"}), encoding="utf-8")

    cache = _cache(FileSnapshotStorage(snapshot_path))
    await cache.load()

    assert cache.state() is CacheState.EMPTY
    assert cache.cached_at == 0


async def test_persist_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    cache = _cache(_FailingStorage())
    with caplog.at_level(logging.WARNING, logger="metar_relay.hub.weather_cache"):
        stored, changed = await cache.apply(_entry())
        await cache.flush()

    assert changed is True
    assert stored.metar == SAMPLE_METAR
    assert cache.is_fresh()
    assert "Failed to persist weather cache snapshot" in caplog.text


async def test_ephemeral_storage_keeps_a_detached_copy() -> None:
    storage = EphemeralSnapshotStorage()
    assert await storage.load() is None

    payload = {"cached": None, "cachedMetar": "x", "cachedAt": 1}
    await storage.save(payload)
    payload["cachedMetar"] = "changed"

    assert await storage.load() == {"cached": None, "cachedMetar": "x", "cachedAt": 1}
    assert storage.durable is False


@pytest.mark.parametrize(
    ("backend", "serverless", "expected"),
    [
        ("auto", False, FileSnapshotStorage),
        ("auto", True, EphemeralSnapshotStorage),
        ("file", True, FileSnapshotStorage),
        ("memory", False, EphemeralSnapshotStorage),
    ],
)
def test_build_snapshot_storage(backend, serverless, expected, tmp_path: Path) -> None:
    settings = SimpleNamespace(
        cache_storage=backend,
        serverless=serverless,
        cache_snapshot_path=str(tmp_path / "cache.json"),
    )
    assert isinstance(build_snapshot_storage(settings), expected)


def test_entry_from_payload_skips_invalid_fields() -> None:
    entry = CacheEntry.from_payload(
        {
            "metar": SAMPLE_METAR,
            "wind": {"dir": "090"},
            "clouds": [{"type": "FEW", "heightFt": 2000}, {"type": "BKN", "heightFt": "low"}],
            "weather": ["-RA", 5],
            "temperatureC": 24.0,
            "humidity": True,
        }
    )

    assert entry is not None
    assert entry.wind is None
    assert [layer.type for layer in entry.clouds] == ["FEW"]
    assert entry.weather == ("-RA",)
    assert entry.temperature_c == 24
    assert entry.humidity is None
    assert CacheEntry.from_payload({"temperature": 24}) is None
