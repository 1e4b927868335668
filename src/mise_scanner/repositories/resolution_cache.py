from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mise_scanner.core.metrics import CACHE_HITS, CACHE_MISSES
from mise_scanner.domain.models import CacheEntry, DataSource
from mise_scanner.domain.ports import AbstractResolutionCache

logger = logging.getLogger(__name__)


def _from_json(item: dict[str, Any]) -> CacheEntry | None:
    code = str(item.get("codigo") or "")
    if not code:
        return None
    created_at = datetime.now(UTC)
    if item.get("data"):
        try:
            created_at = datetime.fromisoformat(str(item["data"]))
        except ValueError:
            pass
    return CacheEntry(
        barcode=code,
        name=str(item.get("nome") or ""),
        source=str(item.get("fonte") or DataSource.CACHE.value),
        brand=str(item.get("marca") or ""),
        category=str(item.get("categoria") or ""),
        created_at=created_at,
    )


def _to_json(entry: CacheEntry) -> dict[str, Any]:
    return {
        "codigo": entry.barcode,
        "nome": entry.name,
        "fonte": entry.source,
        "marca": entry.brand,
        "categoria": entry.category,
        "data": entry.created_at.isoformat(),
    }


class JsonResolutionCache(AbstractResolutionCache):
    """
    Resolution Cache als JSON-Array auf der Platte.
    Lesen und Schreiben erfolgen ohne await dazwischen, ein Insert ist
    innerhalb der Event-Loop daher nicht unterbrechbar.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def _read(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Resolution cache %s unreadable, treating as empty", self._path, exc_info=True)
            return []
        if not isinstance(data, list):
            logger.warning("Resolution cache %s is not a JSON array, treating as empty", self._path)
            return []
        return [item for item in data if isinstance(item, dict)]

    async def find(self, barcode: str) -> CacheEntry | None:
        for item in self._read():
            if str(item.get("codigo")) == barcode:
                CACHE_HITS.inc()
                return _from_json(item)
        CACHE_MISSES.inc()
        return None

    async def all(self) -> list[CacheEntry]:
        return [entry for entry in map(_from_json, self._read()) if entry is not None]

    async def insert_if_absent(self, entry: CacheEntry) -> bool:
        items = self._read()
        if any(str(item.get("codigo")) == entry.barcode for item in items):
            return False
        items.append(_to_json(entry))
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(items, ensure_ascii=False, indent=2), encoding="utf-8")
        return True

    async def count(self) -> int:
        return len(self._read())
