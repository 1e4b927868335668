# src/mise_scanner/adapters/upcitemdb.py
from __future__ import annotations

import logging
import time

import httpx
from pydantic import BaseModel, Field

from mise_scanner.core.metrics import EXTERNAL_API_COUNT, EXTERNAL_API_DURATION
from mise_scanner.domain.barcodes import clean_product_name
from mise_scanner.domain.models import DataSource, ExternalProduct
from mise_scanner.domain.ports import ExternalApiError, ProductNotFoundError, ProductSourcePort

logger = logging.getLogger(__name__)

# Trial-Plan: kein API-Key, ca. 100 Requests/Tag
_BASE_URL = "https://api.upcitemdb.com/prod/trial"


class _UpcItem(BaseModel):
    title: str | None = None
    description: str | None = None
    brand: str | None = None
    category: str | None = None


class _UpcResponse(BaseModel):
    code: str | None = None
    items: list[_UpcItem] = Field(default_factory=list)


class UpcItemDbAdapter(ProductSourcePort):
    """Adapter für die öffentliche UPCItemDB Lookup-API."""

    source = DataSource.UPCITEMDB

    def __init__(self, http_client: httpx.AsyncClient, timeout: float = 10.0) -> None:
        self._client = http_client
        self._timeout = timeout

    async def fetch_by_barcode(self, barcode: str) -> ExternalProduct:
        started = time.perf_counter()
        try:
            response = await self._client.get(
                f"{_BASE_URL}/lookup",
                params={"upc": barcode},
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
            if response.status_code in (400, 404):
                EXTERNAL_API_COUNT.labels(source=self.source, status="not_found").inc()
                raise ProductNotFoundError(barcode, self.source)
            if response.status_code == 429:
                logger.warning("UPCItemDB: request limit reached")
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            EXTERNAL_API_COUNT.labels(source=self.source, status="error").inc()
            raise ExternalApiError(self.source, str(e)) from e
        except httpx.RequestError as e:
            EXTERNAL_API_COUNT.labels(source=self.source, status="error").inc()
            raise ExternalApiError(self.source, f"Connection error: {e}") from e
        except ValueError as e:
            EXTERNAL_API_COUNT.labels(source=self.source, status="error").inc()
            raise ExternalApiError(self.source, f"Invalid JSON: {e}") from e
        finally:
            EXTERNAL_API_DURATION.labels(source=self.source).observe(
                time.perf_counter() - started
            )

        raw = _UpcResponse.model_validate(payload)
        item = raw.items[0] if raw.code == "OK" and raw.items else None
        name = clean_product_name(item.title or item.description) if item else ""
        if item is None or not name:
            EXTERNAL_API_COUNT.labels(source=self.source, status="not_found").inc()
            raise ProductNotFoundError(barcode, self.source)

        EXTERNAL_API_COUNT.labels(source=self.source, status="found").inc()
        logger.info("UPCItemDB: found %s - %s", barcode, name)
        return ExternalProduct(
            barcode=barcode,
            name=name,
            brand=item.brand or "",
            category=item.category or "",
            source=self.source,
        )
