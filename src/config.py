from pathlib import Path
from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STATIC_DIR = Path(__file__).resolve().parent / "static"


class Settings(BaseSettings):
    # Load .env from the project root and accept env keys in any case
    _env_file = Path(__file__).resolve().parent.parent / ".env"
    model_config = SettingsConfigDict(
        env_file=str(_env_file), extra="ignore", case_sensitive=False, populate_by_name=True
    )

    app_name: str = "METAR Relay Hub"
    app_version: str = "0.1.0"
    debug: bool = False
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    port: int = 8000

    # Station / upstream provider
    station_code: str = Field(default="SBRP", min_length=4, max_length=4, description="ICAO code of the served station.")
    metar_base_url: str = Field(
        default="http://redemet.decea.gov.br/api/consulta_automatica/index.php",
        description="Endpoint of the aviation weather provider returning raw METAR lines.",
    )
    metar_user_agent: str = Field(
        default="MetarRelayHub/0.1.0 (support@example.com)",
        description="User-Agent sent to the METAR provider.",
    )
    metar_request_timeout: float = Field(default=10.0, gt=0.0, description="Timeout in seconds for upstream METAR calls")
    clock_offset_hours: int = Field(
        default=3,
        ge=-12,
        le=14,
        description="Fixed hour shift applied to report clock times and to the provider's calendar day.",
    )

    # Cache
    weather_cache_ttl_minutes: float = Field(
        default=30.0,
        gt=0.0,
        description="Freshness window (minutes) before a cached observation is refetched.",
    )
    cache_snapshot_path: str = Field(
        default="data/weather-cache.json",
        description="JSON snapshot of the cached observation (relative to the working directory).",
    )
    cache_storage: Literal["auto", "file", "memory"] = Field(
        default="auto",
        description="Snapshot backend. 'auto' picks 'memory' on serverless hosts and 'file' elsewhere.",
    )
    serverless: bool = Field(
        default=False,
        alias="VERCEL",
        description="Set by serverless hosts (VERCEL=1) where the local disk is not durable.",
    )

    weather_icons_dir: str = Field(
        default=str(STATIC_DIR / "weather-icons"),
        description="Directory holding the SVG weather icons served by /weather/icon.",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def normalize_cors(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                import json
                return json.loads(s)
            if s in ("", "*"):
                return ["*"]
            return [p.strip() for p in s.split(",")]
        return v

    @field_validator("station_code", mode="before")
    @classmethod
    def normalize_station(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


settings = Settings()
