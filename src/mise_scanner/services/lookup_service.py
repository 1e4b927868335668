from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from mise_scanner.core.metrics import LOOKUP_RESULTS
from mise_scanner.domain.barcodes import normalize_code
from mise_scanner.domain.models import (
    BARCODE_KEY,
    CacheEntry,
    DataSource,
    ExternalProduct,
    LookupResult,
    NameSearchItem,
    StatsResponse,
    record_name,
)
from mise_scanner.domain.ports import (
    AbstractResolutionCache,
    ExternalApiError,
    FileUploaderPort,
    ProductNotFoundError,
    ProductSourcePort,
)
from mise_scanner.repositories.collected_catalog import CollectedCatalog
from mise_scanner.repositories.dataset import LocalDatasetReader
from mise_scanner.services.background import BackgroundTaskRunner
from mise_scanner.services.photo_service import PhotoService

logger = logging.getLogger(__name__)

INVALID_CODE_MESSAGE = "Código inválido"
NOT_FOUND_MESSAGE = "Produto não encontrado em nenhuma base (local, cache, APIs abertas ou Cosmos)"
MIN_SEARCH_TERM_LENGTH = 2
SEARCH_LIMIT = 10


def _resolve_sources(
    names: list[str], registry: dict[DataSource, ProductSourcePort]
) -> list[ProductSourcePort]:
    adapters: list[ProductSourcePort] = []
    for name in names:
        try:
            source = DataSource(name)
        except ValueError:
            logger.warning("Invalid source '%s' in lookup configuration", name)
            continue
        adapter = registry.get(source)
        if adapter is None:
            logger.warning("No adapter found for source '%s'", name)
            continue
        adapters.append(adapter)
    return adapters


class LookupService:
    """
    Barcode-Lookup über alle Ebenen: lokaler Katalog, Resolution Cache,
    externe Quellen (parallel, danach sequenzieller Fallback).

    Fehler einer Ebene werden geloggt und als "nichts gefunden" gewertet,
    ein Lookup endet daher immer mit einem LookupResult.
    """

    def __init__(
        self,
        dataset: LocalDatasetReader,
        resolution_cache: AbstractResolutionCache,
        adapter_registry: dict[DataSource, ProductSourcePort],
        parallel_sources: list[str],
        fallback_sources: list[str],
        parallel_lookup: bool = True,
        lookup_timeout: float = 30.0,
        photo_service: PhotoService | None = None,
        catalog: CollectedCatalog | None = None,
        uploader: FileUploaderPort | None = None,
        background: BackgroundTaskRunner | None = None,
        min_code_length: int = 8,
    ) -> None:
        self._dataset = dataset
        self._cache = resolution_cache
        self._parallel = _resolve_sources(parallel_sources, adapter_registry)
        self._fallback = _resolve_sources(fallback_sources, adapter_registry)
        self._parallel_lookup = parallel_lookup
        self._lookup_timeout = lookup_timeout
        self._photos = photo_service
        self._catalog = catalog
        self._uploader = uploader
        self._background = background
        self._min_code_length = min_code_length

    async def lookup(self, raw_code: str) -> LookupResult:
        code = normalize_code(raw_code)
        if len(code) < self._min_code_length:
            LOOKUP_RESULTS.labels(origin="invalid").inc()
            return LookupResult(ok=False, mensagem=INVALID_CODE_MESSAGE)

        # 1. Lokaler Katalog
        record = await self._from_local(code)
        if record is not None:
            produto: dict[str, Any] = dict(record)
            await self._attach_photo(produto, code)
            LOOKUP_RESULTS.labels(origin=DataSource.LOCAL.value).inc()
            return LookupResult(ok=True, origem=DataSource.LOCAL.value, produto=produto)

        # 2. Resolution Cache
        entry = await self._from_cache(code)
        if entry is not None:
            produto = await self._product_payload(code, entry.name, entry.brand, entry.category)
            LOOKUP_RESULTS.labels(origin=DataSource.CACHE.value).inc()
            return LookupResult(
                ok=True, origem=DataSource.CACHE.value, fonte=entry.source, produto=produto
            )

        # 3. Externe Quellen
        product = await self._from_external(code)
        if product is not None:
            await self._write_back(product)
            produto = await self._product_payload(code, product.name, product.brand, product.category)
            LOOKUP_RESULTS.labels(origin=product.source.value).inc()
            return LookupResult(ok=True, origem=product.source.value, produto=produto)

        LOOKUP_RESULTS.labels(origin="not_found").inc()
        return LookupResult(ok=False, mensagem=NOT_FOUND_MESSAGE)

    async def search_by_name(self, term: str) -> list[NameSearchItem]:
        if len(term.strip()) < MIN_SEARCH_TERM_LENGTH:
            return []
        try:
            records = await self._dataset.search_by_name(term, limit=SEARCH_LIMIT)
        except Exception:
            logger.warning("Local dataset search failed for %r", term, exc_info=True)
            return []
        return [
            NameSearchItem(
                codigo=record[BARCODE_KEY],
                nome=record_name(record),
                marca=record.get("marca", ""),
                categoria=record.get("categoria", ""),
            )
            for record in records
        ]

    async def stats(self) -> StatsResponse:
        try:
            local = await self._dataset.count()
        except Exception:
            logger.warning("Could not count local dataset records", exc_info=True)
            local = 0
        try:
            online = await self._cache.count()
        except Exception:
            logger.warning("Could not count resolution cache entries", exc_info=True)
            online = 0
        return StatsResponse(local=local, online=online, backend=self._dataset.backend)

    # ------------------------------------------------------------------
    # Ebenen
    # ------------------------------------------------------------------

    async def _from_local(self, code: str) -> dict[str, str] | None:
        try:
            return await self._dataset.find(code)
        except Exception:
            logger.warning("Local dataset lookup failed for %s", code, exc_info=True)
            return None

    async def _from_cache(self, code: str) -> CacheEntry | None:
        try:
            return await self._cache.find(code)
        except Exception:
            logger.warning("Resolution cache lookup failed for %s", code, exc_info=True)
            return None

    async def _from_external(self, code: str) -> ExternalProduct | None:
        product = await self._first_of_parallel(code)
        if product is not None:
            return product
        for adapter in self._fallback:
            product = await self._safe_fetch(adapter, code)
            if product is not None:
                return product
        return None

    async def _first_of_parallel(self, code: str) -> ExternalProduct | None:
        if not self._parallel:
            return None

        if not self._parallel_lookup:
            for adapter in self._parallel:
                product = await self._safe_fetch(adapter, code)
                if product is not None:
                    return product
            return None

        tasks = [
            asyncio.create_task(self._safe_fetch(adapter, code), name=f"lookup-{adapter.source}")
            for adapter in self._parallel
        ]
        done, pending = await asyncio.wait(tasks, timeout=self._lookup_timeout)
        if pending:
            logger.warning(
                "Parallel lookup for %s timed out after %.1fs, %d source(s) cancelled",
                code,
                self._lookup_timeout,
                len(pending),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        # Konfigurationsreihenfolge entscheidet, nicht die Ankunftszeit
        for task in tasks:
            if task in done and task.result() is not None:
                return task.result()
        return None

    async def _safe_fetch(self, adapter: ProductSourcePort, code: str) -> ExternalProduct | None:
        try:
            return await adapter.fetch_by_barcode(code)
        except ProductNotFoundError:
            return None
        except ExternalApiError as e:
            logger.warning("%s", e)
            return None
        except Exception:
            logger.exception("Unexpected error from source '%s' for %s", adapter.source, code)
            return None

    # ------------------------------------------------------------------
    # Write-back und Fotos
    # ------------------------------------------------------------------

    async def _write_back(self, product: ExternalProduct) -> None:
        try:
            await self._cache.insert_if_absent(CacheEntry.from_product(product))
        except Exception:
            logger.exception("Could not store %s in resolution cache", product.barcode)

        if self._catalog is None:
            return
        try:
            written = await self._catalog.append_if_absent(product)
        except Exception:
            logger.exception("Could not append %s to %s", product.barcode, self._catalog.path)
            return

        if written and self._uploader is not None and self._uploader.is_configured():
            if self._background is None:
                logger.warning("No background runner, skipping upload of %s", self._catalog.path)
                return
            self._background.spawn(
                self._upload(self._catalog.path), name=f"onedrive-{self._catalog.path.name}"
            )

    async def _upload(self, path: Path) -> None:
        assert self._uploader is not None
        result = await self._uploader.upload(path)
        if not result.ok:
            logger.warning("OneDrive upload of %s failed: %s", path.name, result.error)

    async def _product_payload(
        self, code: str, name: str, brand: str, category: str
    ) -> dict[str, Any]:
        produto: dict[str, Any] = {
            BARCODE_KEY: code,
            "nome": name,
            "produto": name,
            "marca": brand,
            "categoria": category,
        }
        await self._attach_photo(produto, code)
        return produto

    async def _attach_photo(self, produto: dict[str, Any], code: str) -> None:
        if self._photos is None:
            return
        try:
            photo = await self._photos.resolve(code)
        except Exception:
            logger.warning("Photo lookup failed for %s", code, exc_info=True)
            return
        if photo is not None:
            produto["foto"] = photo.model_dump(mode="json")
