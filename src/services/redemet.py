from __future__ import annotations

import logging
from datetime import date
from typing import Optional

import httpx

from services.errors import UpstreamUnavailable

logger = logging.getLogger("metar_relay.hub.redemet")


class RedemetClient:
    """Fetches raw METAR lines from the REDEMET automatic query endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        user_agent: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url
        self._user_agent = user_agent
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "User-Agent": self._user_agent,
                "Accept": "text/plain",
            }
            self._client = httpx.AsyncClient(headers=headers, timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_report(self, station: str, day: date) -> str:
        """Return the first line of the provider's answer for ``station`` on ``day``.

        Raises :class:`UpstreamUnavailable` on transport errors, timeouts and
        non-success statuses.
        """
        stamp = day.strftime("%Y%m%d")
        params = {
            "local": station.lower(),
            "msg": "metar",
            "data_ini": stamp,
            "data_fim": stamp,
        }
        client = await self._get_client()
        logger.debug("Fetching METAR from %s with params %s", self._base_url, params)
        try:
            response = await client.get(self._base_url, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("METAR request timed out after %.1fs: %s", self._timeout, exc)
            raise UpstreamUnavailable(f"METAR request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning("METAR request failed: %s", exc)
            raise UpstreamUnavailable(f"METAR request failed: {exc}") from exc

        if not response.is_success:
            logger.error(
                "METAR provider returned %s: params=%s body=%s",
                response.status_code,
                params,
                response.text[:512] if response.text else None,
            )
            raise UpstreamUnavailable(
                f"METAR provider returned HTTP {response.status_code}",
                status=response.status_code,
            )

        return response.text.split("\n")[0].strip()


__all__ = ["RedemetClient"]
