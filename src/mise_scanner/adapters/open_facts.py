# src/mise_scanner/adapters/open_facts.py
from __future__ import annotations

import logging
import time

import httpx
from pydantic import BaseModel

from mise_scanner.core.metrics import EXTERNAL_API_COUNT, EXTERNAL_API_DURATION
from mise_scanner.domain.barcodes import clean_product_name
from mise_scanner.domain.models import DataSource, ExternalProduct
from mise_scanner.domain.ports import ExternalApiError, ProductNotFoundError, ProductSourcePort

logger = logging.getLogger(__name__)

OPEN_FOOD_FACTS_URL = "https://world.openfoodfacts.org"
OPEN_BEAUTY_FACTS_URL = "https://world.openbeautyfacts.org"
OPEN_PET_FOOD_FACTS_URL = "https://world.openpetfoodfacts.org"

# ---------------------------------------------------------------------------
# Interne Rohdaten-Schemas (gemeinsam für alle "Open * Facts" Datenbanken)
# ---------------------------------------------------------------------------


class _OpenFactsProduct(BaseModel):
    product_name_pt: str | None = None
    product_name: str | None = None
    generic_name: str | None = None
    brands: str | None = None
    categories: str | None = None

    @property
    def best_name(self) -> str | None:
        return self.product_name_pt or self.product_name or self.generic_name or None


class _OpenFactsResponse(BaseModel):
    status: int = 0  # 1 = found, 0 = not found
    product: _OpenFactsProduct | None = None


# ---------------------------------------------------------------------------
# Adapter-Implementierung
# ---------------------------------------------------------------------------


class OpenFactsAdapter(ProductSourcePort):
    """
    Adapter für die API v2 der Open-Facts-Familie.
    Open Food Facts, Open Beauty Facts und Open Pet Food Facts teilen sich
    dasselbe Antwortformat und unterscheiden sich nur in der Basis-URL.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        source: DataSource,
        base_url: str,
        timeout: float = 10.0,
    ) -> None:
        self._client = http_client
        self.source = source
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def fetch_by_barcode(self, barcode: str) -> ExternalProduct:
        url = f"{self._base_url}/api/v2/product/{barcode}.json"
        started = time.perf_counter()
        try:
            response = await self._client.get(url, timeout=self._timeout)
            if response.status_code == 404:
                EXTERNAL_API_COUNT.labels(source=self.source, status="not_found").inc()
                raise ProductNotFoundError(barcode, self.source)
            response.raise_for_status()
            payload = response.json()
        except ValueError as e:
            EXTERNAL_API_COUNT.labels(source=self.source, status="error").inc()
            raise ExternalApiError(self.source, f"Invalid JSON: {e}") from e
        except httpx.HTTPStatusError as e:
            EXTERNAL_API_COUNT.labels(source=self.source, status="error").inc()
            raise ExternalApiError(self.source, str(e)) from e
        except httpx.RequestError as e:
            EXTERNAL_API_COUNT.labels(source=self.source, status="error").inc()
            raise ExternalApiError(self.source, f"Connection error: {e}") from e
        finally:
            EXTERNAL_API_DURATION.labels(source=self.source).observe(
                time.perf_counter() - started
            )

        raw = _OpenFactsResponse.model_validate(payload)
        name = raw.product.best_name if raw.product else None
        if raw.status != 1 or raw.product is None or not clean_product_name(name):
            EXTERNAL_API_COUNT.labels(source=self.source, status="not_found").inc()
            raise ProductNotFoundError(barcode, self.source)

        EXTERNAL_API_COUNT.labels(source=self.source, status="found").inc()
        logger.info("%s: found %s - %s", self.source, barcode, name)
        return ExternalProduct(
            barcode=barcode,
            name=clean_product_name(name),
            brand=raw.product.brands or "",
            category=raw.product.categories or "",
            source=self.source,
        )


def open_food_facts(http_client: httpx.AsyncClient, timeout: float = 10.0) -> OpenFactsAdapter:
    return OpenFactsAdapter(http_client, DataSource.OPEN_FOOD_FACTS, OPEN_FOOD_FACTS_URL, timeout)


def open_beauty_facts(http_client: httpx.AsyncClient, timeout: float = 10.0) -> OpenFactsAdapter:
    return OpenFactsAdapter(
        http_client, DataSource.OPEN_BEAUTY_FACTS, OPEN_BEAUTY_FACTS_URL, timeout
    )


def open_pet_food_facts(http_client: httpx.AsyncClient, timeout: float = 10.0) -> OpenFactsAdapter:
    return OpenFactsAdapter(
        http_client, DataSource.OPEN_PET_FOOD_FACTS, OPEN_PET_FOOD_FACTS_URL, timeout
    )
