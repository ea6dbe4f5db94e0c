from __future__ import annotations

from typing import Dict, Optional


class WeatherServiceError(Exception):
    """Base class for failures surfaced by the weather endpoint."""

    status_code = 500
    error = "Internal error"

    def to_payload(self) -> Dict[str, object]:
        return {"error": self.error}


class UpstreamUnavailable(WeatherServiceError):
    """Raised on transport errors, timeouts or non-success statuses from the METAR provider."""

    status_code = 502
    error = "Failed to fetch data"

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    def to_payload(self) -> Dict[str, object]:
        return {"error": self.error, "status": self.status}


class MalformedReport(WeatherServiceError):
    """Raised when the provider answered but no temperature group could be decoded."""

    status_code = 422
    error = "METAR not found or unexpected format"

    def __init__(self, metar: str) -> None:
        super().__init__(f"Unable to decode temperature from METAR: {metar!r}")
        self.metar = metar

    def to_payload(self) -> Dict[str, object]:
        return {"error": self.error, "metar": self.metar}


class InternalError(WeatherServiceError):
    status_code = 500
    error = "Internal error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, object]:
        return {"error": self.error, "message": self.message}
