"""METAR decoding.

Every field is extracted independently with its own pattern, so a garbled or
missing group only blanks that field and never aborts the decode. When a
pattern could match more than once the first left-to-right match wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

REPORT_MARKER = "METAR"
VISIBILITY_UNRESTRICTED = ">=10km"
DEFAULT_CLOCK_OFFSET_HOURS = 3

CLOUD_COVER_TYPES = ("SKC", "CLR", "FEW", "SCT", "BKN", "OVC", "VV")
WEATHER_DESCRIPTORS = ("MI", "PR", "BC", "DR", "BL", "SH", "TS", "FZ")
WEATHER_PHENOMENA = (
    "DZ", "RA", "SN", "SG", "IC", "PL", "GR", "GS", "UP",
    "BR", "FG", "SS", "DS", "SQ", "PO",
)

_STATION_RE = re.compile(r"^METAR\s+([A-Z]{4})")
_TIME_RE = re.compile(r"\b(\d{2})(\d{2})(\d{2})Z\b")
_WIND_RE = re.compile(r"\b(\d{3}|VRB)(\d{2,3})(G(\d{2,3}))?KT\b")
_VISIBILITY_RE = re.compile(r"\b(CAVOK|9999|\d{4})\b")
_CLOUD_RE = re.compile(r"\b(" + "|".join(CLOUD_COVER_TYPES) + r")(\d{3})([A-Z]{0,2})?\b")
_WEATHER_RE = re.compile(
    # Whole tokens only, never the station group right after the report marker.
    r"(?:(?<=\s)|^)(?<!METAR\s)(?:-|\+|VC)?"
    r"(?:" + "|".join(WEATHER_DESCRIPTORS) + r")?"
    r"(?:" + "|".join(WEATHER_PHENOMENA) + r")(?=\s|=|$)"
)
_TEMP_DEW_RE = re.compile(r"\b(M?\d{1,2})/(M?\d{1,2})\b")
_QNH_RE = re.compile(r"\bQ(\d{4})\b")
_ALTIMETER_RE = re.compile(r"\bA(\d{4})\b")


@dataclass(frozen=True, slots=True)
class Wind:
    dir: str
    speed_kt: int
    gust_kt: Optional[int] = None

    def to_payload(self) -> Dict[str, object]:
        return {"dir": self.dir, "speedKt": self.speed_kt, "gustKt": self.gust_kt}

    @classmethod
    def from_payload(cls, payload: object) -> Optional["Wind"]:
        if not isinstance(payload, dict):
            return None
        direction = payload.get("dir")
        speed = payload.get("speedKt")
        if not isinstance(direction, str) or not isinstance(speed, int):
            return None
        gust = payload.get("gustKt")
        return cls(dir=direction, speed_kt=speed, gust_kt=gust if isinstance(gust, int) else None)


@dataclass(frozen=True, slots=True)
class CloudLayer:
    type: str
    height_ft: int
    modifier: Optional[str] = None

    def to_payload(self) -> Dict[str, object]:
        return {"type": self.type, "heightFt": self.height_ft, "modifier": self.modifier}

    @classmethod
    def from_payload(cls, payload: object) -> Optional["CloudLayer"]:
        if not isinstance(payload, dict):
            return None
        cover = payload.get("type")
        height = payload.get("heightFt")
        if not isinstance(cover, str) or not isinstance(height, int) or height < 0 or height % 100:
            return None
        modifier = payload.get("modifier")
        return cls(type=cover, height_ft=height, modifier=modifier if isinstance(modifier, str) and modifier else None)


@dataclass(frozen=True, slots=True)
class Observation:
    """Structured fields decoded from a single METAR line."""

    raw: str
    station: Optional[str] = None
    obs_time: Optional[str] = None
    obs_local_time: Optional[str] = None
    wind: Optional[Wind] = None
    visibility: Optional[str] = None
    clouds: Tuple[CloudLayer, ...] = field(default_factory=tuple)
    weather: Optional[Tuple[str, ...]] = None
    temperature_c: Optional[int] = None
    dew_point_c: Optional[int] = None
    qnh_hpa: Optional[int] = None
    alt_inhg: Optional[str] = None

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "raw": self.raw,
            "station": self.station,
            "obsTime": self.obs_time,
            "obsLocalTime": self.obs_local_time,
            "wind": self.wind.to_payload() if self.wind else None,
            "visibility": self.visibility,
            "clouds": [layer.to_payload() for layer in self.clouds],
            "weather": list(self.weather) if self.weather else None,
            "temperatureC": self.temperature_c,
            "dewPointC": self.dew_point_c,
        }
        if self.qnh_hpa is not None:
            payload["qnh_hpa"] = self.qnh_hpa
        elif self.alt_inhg is not None:
            payload["alt_inhg"] = self.alt_inhg
        return payload


def extract_report(text: Optional[str]) -> str:
    """Return the METAR line starting at the report marker, dropping any prefix such as a timestamp."""
    value = (text or "").strip()
    idx = value.find(REPORT_MARKER)
    return value[idx:] if idx >= 0 else value


def _signed(token: str) -> Optional[int]:
    try:
        return int(token.replace("M", "-", 1))
    except ValueError:
        return None


def _local_clock(day: int, hour: int, minute: int, *, now: datetime, offset_hours: int) -> Optional[str]:
    # Day/hour/minute are treated as elapsed time from the first of the current month.
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if day < 1:
        return None
    moment = month_start + timedelta(days=day - 1, hours=hour + offset_hours, minutes=minute)
    return moment.strftime("%H:%M")


def decode_metar(
    raw: Optional[str],
    *,
    now: Optional[datetime] = None,
    offset_hours: int = DEFAULT_CLOCK_OFFSET_HOURS,
) -> Observation:
    """Decode a raw METAR line into an :class:`Observation`.

    Never raises: unmatched groups leave their fields at ``None`` (``clouds`` empty).
    ``now`` anchors the month used for the local observation clock and defaults to
    the current UTC time.
    """

    metar = (raw or "").strip()
    if not metar:
        return Observation(raw="")

    station_match = _STATION_RE.search(metar)
    time_match = _TIME_RE.search(metar)
    wind_match = _WIND_RE.search(metar)
    vis_match = _VISIBILITY_RE.search(metar)
    temp_match = _TEMP_DEW_RE.search(metar)
    qnh_match = _QNH_RE.search(metar)
    alt_match = _ALTIMETER_RE.search(metar)

    obs_time: Optional[str] = None
    obs_local_time: Optional[str] = None
    if time_match:
        obs_time = time_match.group(0)
        reference = now or datetime.now(timezone.utc)
        obs_local_time = _local_clock(
            int(time_match.group(1)),
            int(time_match.group(2)),
            int(time_match.group(3)),
            now=reference,
            offset_hours=offset_hours,
        )

    wind: Optional[Wind] = None
    if wind_match:
        wind = Wind(
            dir=wind_match.group(1),
            speed_kt=int(wind_match.group(2)),
            gust_kt=int(wind_match.group(4)) if wind_match.group(4) else None,
        )

    visibility: Optional[str] = None
    if vis_match:
        code = vis_match.group(1)
        visibility = VISIBILITY_UNRESTRICTED if code in ("9999", "CAVOK") else f"{code} m"

    clouds = tuple(
        CloudLayer(type=m.group(1), height_ft=int(m.group(2)) * 100, modifier=m.group(3) or None)
        for m in _CLOUD_RE.finditer(metar)
    )

    weather: List[str] = [m.group(0).strip() for m in _WEATHER_RE.finditer(metar)]
    weather = [token for token in weather if token]

    temperature_c = _signed(temp_match.group(1)) if temp_match else None
    dew_point_c = _signed(temp_match.group(2)) if temp_match else None

    qnh_hpa = int(qnh_match.group(1)) if qnh_match else None
    alt_inhg = alt_match.group(1) if alt_match and qnh_hpa is None else None

    return Observation(
        raw=metar,
        station=station_match.group(1) if station_match else None,
        obs_time=obs_time,
        obs_local_time=obs_local_time,
        wind=wind,
        visibility=visibility,
        clouds=clouds,
        weather=tuple(weather) if weather else None,
        temperature_c=temperature_c,
        dew_point_c=dew_point_c,
        qnh_hpa=qnh_hpa,
        alt_inhg=alt_inhg,
    )


__all__ = [
    "CloudLayer",
    "Observation",
    "VISIBILITY_UNRESTRICTED",
    "Wind",
    "decode_metar",
    "extract_report",
]
