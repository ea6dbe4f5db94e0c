import asyncio
import sys
from collections import deque
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from config import settings  # noqa: E402
from main import create_app  # noqa: E402
from services.redemet import RedemetClient  # noqa: E402
from services.snapshot_storage import FileSnapshotStorage  # noqa: E402
from services.weather import WeatherService, build_weather_service  # noqa: E402
from services.weather_cache import WeatherCache  # noqa: E402

SAMPLE_METAR = "METAR SBRP 201800Z 09008KT 9999 FEW020 24/18 Q1015="
UPDATED_METAR = "METAR SBRP 201900Z 12010G20KT 8000 -RA BKN015 22/19 Q1013="
MALFORMED_METAR = "METAR SBRP 201800Z 09008KT 9999 FEW020 Q1015="
PROVIDER_URL = "https://redemet.test/api/consulta_automatica/index.php"


class FakeProvider:
    """Scripted stand-in for the METAR provider, served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self._queue: Deque[Dict[str, Any]] = deque()
        self._last: Dict[str, Any] = {"text": SAMPLE_METAR, "status": 200}
        self.requests: List[httpx.Request] = []
        self.delay: float = 0.0

    def respond(self, text: str = SAMPLE_METAR, *, status: int = 200, error: Optional[Exception] = None) -> None:
        self._queue.append({"text": text, "status": status, "error": error})

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        scripted = self._queue.popleft() if self._queue else self._last
        self._last = scripted
        error = scripted.get("error")
        if error is not None:
            raise error
        return httpx.Response(scripted["status"], text=scripted["text"], request=request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings_override() -> Callable[..., None]:
    original: Dict[str, Any] = {}

    def _apply(**overrides: Any) -> None:
        for key, value in overrides.items():
            if key not in original:
                original[key] = getattr(settings, key)
            setattr(settings, key, value)

    yield _apply

    for key, value in original.items():
        setattr(settings, key, value)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 18, 22, 30, tzinfo=timezone.utc))


@pytest.fixture
def snapshot_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "weather-cache.json"


@pytest.fixture
def make_service(provider: FakeProvider, clock: FakeClock, snapshot_path: Path) -> Callable[..., WeatherService]:
    def _build(*, storage=None, ttl_seconds: float = 30 * 60) -> WeatherService:
        cache = WeatherCache(
            storage or FileSnapshotStorage(snapshot_path),
            ttl_seconds=ttl_seconds,
            clock=clock.timestamp,
        )
        client = RedemetClient(
            base_url=PROVIDER_URL,
            user_agent="metar-relay-tests/0.1",
            timeout=2.0,
            transport=provider.transport,
        )
        return WeatherService(cache, client, station="SBRP", clock=clock)

    return _build


@pytest.fixture
def weather_service(
    settings_override: Callable[..., None],
    provider: FakeProvider,
    snapshot_path: Path,
) -> WeatherService:
    settings_override(
        cache_storage="file",
        cache_snapshot_path=str(snapshot_path),
        metar_base_url=PROVIDER_URL,
    )
    return build_weather_service(settings, transport=provider.transport)


@pytest.fixture
def client(weather_service: WeatherService) -> TestClient:
    app = create_app(weather_service)
    with TestClient(app) as test_client:
        yield test_client
