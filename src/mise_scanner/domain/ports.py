# src/mise_scanner/domain/ports.py
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from mise_scanner.domain.models import CacheEntry, DataSource, ExternalProduct, UploadResult


class ProductSourcePort(ABC):
    """
    Abstrakte Schnittstelle für externe Produktdatenquellen.
    Jeder Adapter MUSS dieses Interface implementieren.
    Die Lookup-Kaskade kennt ausschließlich dieses Interface.
    """

    source: DataSource

    @abstractmethod
    async def fetch_by_barcode(self, barcode: str) -> ExternalProduct:
        """
        Ruft ein Produkt anhand seines normalisierten Barcodes ab.

        Raises:
            ProductNotFoundError: Wenn die Quelle den Barcode nicht kennt.
            ExternalApiError: Bei Kommunikationsproblemen mit der externen Quelle.
        """
        ...


class AbstractResolutionCache(ABC):
    """Speicher für online aufgelöste Barcodes (höchstens ein Eintrag pro Barcode)."""

    @abstractmethod
    async def find(self, barcode: str) -> CacheEntry | None: ...

    @abstractmethod
    async def all(self) -> list[CacheEntry]: ...

    @abstractmethod
    async def insert_if_absent(self, entry: CacheEntry) -> bool:
        """Returns True if the entry was written, False if the barcode already existed."""
        ...

    @abstractmethod
    async def count(self) -> int: ...


class FileUploaderPort(ABC):
    """Spiegelt lokale Dateien in einen externen Speicher (z.B. OneDrive)."""

    @abstractmethod
    def is_configured(self) -> bool: ...

    @abstractmethod
    async def upload(self, local_path: Path) -> UploadResult: ...


# ---------------------------------------------------------------------------
# Custom Domain Exceptions
# ---------------------------------------------------------------------------


class ProductNotFoundError(Exception):
    def __init__(self, product_id: str, source: str):
        super().__init__(f"Product '{product_id}' not found in source '{source}'")
        self.product_id = product_id
        self.source = source


class ExternalApiError(Exception):
    def __init__(self, source: str, detail: str):
        super().__init__(f"External API error from '{source}': {detail}")
        self.source = source
        self.detail = detail


class StorageError(Exception):
    def __init__(self, store: str, detail: str):
        super().__init__(f"Storage error in '{store}': {detail}")
        self.store = store
        self.detail = detail
