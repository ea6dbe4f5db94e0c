from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("metar_relay.hub.snapshot_storage")


class SnapshotStorage(ABC):
    """Durable home for the weather cache snapshot."""

    name: str = "abstract"
    durable: bool = False

    @abstractmethod
    async def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored snapshot, or ``None`` when nothing usable is stored."""

    @abstractmethod
    async def save(self, payload: Dict[str, Any]) -> None:
        """Persist ``payload``. May raise ``OSError``; callers decide how to report it."""


class FileSnapshotStorage(SnapshotStorage):
    name = "file"
    durable = True

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._read)

    async def save(self, payload: Dict[str, Any]) -> None:
        text = json.dumps(payload, indent=2, ensure_ascii=False)
        await asyncio.to_thread(self._write, text)

    def _read(self) -> Optional[Dict[str, Any]]:
        if not self._path.exists():
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load weather cache snapshot %s: %s", self._path, exc)
            return None
        if not isinstance(raw, dict):
            logger.warning("Ignoring weather cache snapshot %s: expected an object", self._path)
            return None
        return raw

    def _write(self, text: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(text, encoding="utf-8")


class EphemeralSnapshotStorage(SnapshotStorage):
    """Keeps the last snapshot in memory only; used where the disk does not survive the process."""

    name = "memory"
    durable = False

    def __init__(self) -> None:
        self._payload: Optional[Dict[str, Any]] = None

    async def load(self) -> Optional[Dict[str, Any]]:
        if self._payload is None:
            return None
        return json.loads(json.dumps(self._payload))

    async def save(self, payload: Dict[str, Any]) -> None:
        logger.debug("Ephemeral snapshot storage: keeping cache snapshot in memory only")
        self._payload = json.loads(json.dumps(payload))


def build_snapshot_storage(settings: Any) -> SnapshotStorage:
    backend = settings.cache_storage
    if backend == "auto":
        backend = "memory" if settings.serverless else "file"
    if backend == "memory":
        logger.info("Weather cache persistence disabled (ephemeral storage).")
        return EphemeralSnapshotStorage()
    return FileSnapshotStorage(settings.cache_snapshot_path)


__all__ = [
    "EphemeralSnapshotStorage",
    "FileSnapshotStorage",
    "SnapshotStorage",
    "build_snapshot_storage",
]
