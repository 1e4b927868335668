# src/mise_scanner/adapters/cosmos.py
from __future__ import annotations

import logging
import time
from collections.abc import Callable

import httpx
from bs4 import BeautifulSoup

from mise_scanner.core.metrics import EXTERNAL_API_COUNT, EXTERNAL_API_DURATION
from mise_scanner.domain.barcodes import clean_product_name
from mise_scanner.domain.models import DataSource, ExternalProduct
from mise_scanner.domain.ports import ExternalApiError, ProductNotFoundError, ProductSourcePort

logger = logging.getLogger(__name__)

COSMOS_URLS = (
    "https://api.cosmos.bluesoft.com.br/produtos/{code}",
    "https://cosmos.bluesoft.com.br/produtos/{code}",
)

# Cosmos liefert HTML nur an browserähnliche Clients aus
_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
    "Referer": "https://cosmos.bluesoft.com.br/",
}

# ---------------------------------------------------------------------------
# Extraktionsstrategien (netzwerkunabhängig testbar)
# ---------------------------------------------------------------------------

ExtractionStrategy = Callable[[BeautifulSoup], str | None]


def _from_product_description(soup: BeautifulSoup) -> str | None:
    element = soup.select_one("span#product_description")
    return element.get_text(strip=True) if element else None


def _from_og_title(soup: BeautifulSoup) -> str | None:
    meta = soup.find("meta", attrs={"property": "og:title"})
    if meta is None:
        return None
    content = meta.get("content")
    return content.strip() if isinstance(content, str) else None


def _from_first_heading(soup: BeautifulSoup) -> str | None:
    heading = soup.find("h1")
    return heading.get_text(strip=True) if heading else None


DEFAULT_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    _from_product_description,
    _from_og_title,
    _from_first_heading,
)


def extract_product_name(
    html: str, strategies: tuple[ExtractionStrategy, ...] = DEFAULT_STRATEGIES
) -> str | None:
    """Returns the cleaned name from the first strategy that yields one."""
    soup = BeautifulSoup(html, "html.parser")
    for strategy in strategies:
        candidate = clean_product_name(strategy(soup))
        if candidate and candidate != "-":
            return candidate
    return None


# ---------------------------------------------------------------------------
# Adapter-Implementierung
# ---------------------------------------------------------------------------


class CosmosAdapter(ProductSourcePort):
    """
    Scraping-Adapter für den Produktkatalog Cosmos (Bluesoft).
    Probiert nacheinander die API- und die Web-Variante der Produktseite.
    """

    source = DataSource.COSMOS

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        timeout: float = 20.0,
        urls: tuple[str, ...] = COSMOS_URLS,
        strategies: tuple[ExtractionStrategy, ...] = DEFAULT_STRATEGIES,
    ) -> None:
        self._client = http_client
        self._timeout = timeout
        self._urls = urls
        self._strategies = strategies

    async def fetch_by_barcode(self, barcode: str) -> ExternalProduct:
        last_error: Exception | None = None

        for template in self._urls:
            url = template.format(code=barcode)
            started = time.perf_counter()
            try:
                response = await self._client.get(
                    url, headers=_BROWSER_HEADERS, timeout=self._timeout
                )
            except httpx.RequestError as e:
                logger.info("Cosmos: request to %s failed: %s", url, e)
                last_error = e
                continue
            finally:
                EXTERNAL_API_DURATION.labels(source=self.source).observe(
                    time.perf_counter() - started
                )

            if response.status_code != 200:
                logger.info("Cosmos: status %s for %s, trying next URL", response.status_code, url)
                if response.status_code >= 500:
                    last_error = ExternalApiError(self.source, f"HTTP {response.status_code}")
                continue

            name = extract_product_name(response.text, self._strategies) if response.text else None
            if name:
                EXTERNAL_API_COUNT.labels(source=self.source, status="found").inc()
                logger.info("Cosmos: found %s - %s", barcode, name)
                return ExternalProduct(barcode=barcode, name=name, source=self.source)

        if last_error is not None:
            EXTERNAL_API_COUNT.labels(source=self.source, status="error").inc()
            raise ExternalApiError(self.source, str(last_error)) from last_error

        EXTERNAL_API_COUNT.labels(source=self.source, status="not_found").inc()
        raise ProductNotFoundError(barcode, self.source)
