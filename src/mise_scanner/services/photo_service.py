from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from mise_scanner.adapters.r2_storage import R2PhotoStore
from mise_scanner.domain.models import PhotoReference, PhotoSource

logger = logging.getLogger(__name__)

PHOTO_SUFFIXES = ("", "_mise", "_www.mise.ws", "_www.mise", "_mise.ws")
PHOTO_EXTENSIONS = ("jpg", "jpeg", "png", "webp", "gif")


def candidate_filenames(code: str) -> list[str]:
    return [f"{code}{suffix}.{ext}" for suffix in PHOTO_SUFFIXES for ext in PHOTO_EXTENSIONS]


class PhotoService:
    """Sucht das Produktfoto zuerst im R2-Bucket, dann im lokalen Verzeichnis."""

    def __init__(
        self,
        remote: R2PhotoStore | None,
        photos_dir: Path,
        proxy_urls: bool = False,
    ) -> None:
        self._remote = remote
        self._photos_dir = photos_dir
        self._proxy_urls = proxy_urls

    async def resolve(self, code: str) -> PhotoReference | None:
        if not code:
            return None
        if self._remote is not None:
            remote = await self._resolve_remote(code)
            if remote is not None:
                return remote
        return await asyncio.to_thread(self._resolve_local, code)

    async def _resolve_remote(self, code: str) -> PhotoReference | None:
        assert self._remote is not None
        for filename in candidate_filenames(code):
            if not await self._remote.exists(filename):
                continue
            if self._proxy_urls:
                url: str | None = f"/foto-r2/{filename}"
            else:
                url = await self._remote.url_for(filename)
            if url is None:
                # Signieren fehlgeschlagen, resolve() sucht lokal weiter
                return None
            return PhotoReference(source=PhotoSource.REMOTE, url=url, filename=filename)
        return None

    def _resolve_local(self, code: str) -> PhotoReference | None:
        if not self._photos_dir.is_dir():
            return None
        try:
            names = sorted(
                (entry.name for entry in self._photos_dir.iterdir() if entry.is_file()),
                key=str.lower,
            )
        except OSError:
            logger.warning("Could not list photo directory %s", self._photos_dir, exc_info=True)
            return None

        for name in names:
            if name.startswith("."):
                continue
            lowered = name.lower()
            if lowered.startswith(code) and lowered.rsplit(".", 1)[-1] in PHOTO_EXTENSIONS:
                return PhotoReference(source=PhotoSource.LOCAL, url=f"/fotos/{name}", filename=name)
        return None
