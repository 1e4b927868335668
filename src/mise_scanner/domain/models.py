# src/mise_scanner/domain/models.py
from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------

# Lokaler Katalogeintrag: Spaltennamen (lower-case) -> Zellwert.
# Der normalisierte Barcode steht immer unter BARCODE_KEY.
ProductRecord = dict[str, str]

BARCODE_KEY = "cod de barra"
BARCODE_ALIASES = ("cod. de barra", "cod de barra", "codigo de barra", "gtin")


def record_name(record: dict[str, Any]) -> str:
    return record.get("produto") or record.get("nome") or ""


class DataSource(StrEnum):
    LOCAL = "local"
    CACHE = "cache"
    OPEN_FOOD_FACTS = "openfoodfacts"
    OPEN_BEAUTY_FACTS = "openbeautyfacts"
    OPEN_PET_FOOD_FACTS = "openpetfoodfacts"
    UPCITEMDB = "upcitemdb"
    COSMOS = "cosmos"


class PhotoSource(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"


class ExternalProduct(BaseModel):
    """Gemeinsames Ergebnis aller externen Adapter."""

    barcode: str
    name: str = Field(min_length=1, max_length=512)
    brand: str = ""
    category: str = ""
    source: DataSource

    model_config = {"frozen": True}


class CacheEntry(BaseModel):
    """Ein online aufgelöster Barcode, persistiert für spätere Lookups."""

    barcode: str
    name: str
    source: str = DataSource.CACHE.value
    brand: str = ""
    category: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_product(cls, product: ExternalProduct) -> CacheEntry:
        return cls(
            barcode=product.barcode,
            name=product.name,
            source=product.source.value,
            brand=product.brand,
            category=product.category,
        )


class PhotoReference(BaseModel):
    source: PhotoSource
    url: str
    filename: str


# ---------------------------------------------------------------------------
# API Request/Response Schemas
# ---------------------------------------------------------------------------


class LookupResult(BaseModel):
    ok: bool
    origem: str | None = None
    fonte: str | None = None
    produto: dict[str, Any] | None = None
    mensagem: str | None = None


class NameSearchItem(BaseModel):
    codigo: str
    nome: str
    marca: str = ""
    categoria: str = ""


class NameSearchResponse(BaseModel):
    ok: bool = True
    produtos: list[NameSearchItem] = Field(default_factory=list)


class StatsResponse(BaseModel):
    ok: bool = True
    local: int
    online: int
    backend: str


class InventoryCreate(BaseModel):
    codigo: str | None = None
    produto: str | None = None
    quantidade: int | str | None = None
    peso: float | str | None = None
    data_hora: datetime | None = Field(default=None, alias="dataHora")

    model_config = ConfigDict(populate_by_name=True)


class InventoryResult(BaseModel):
    ok: bool
    mensagem: str | None = None
    error: str | None = None
    total: int | None = None
    atualizado: bool | None = None
    onedrive: str | None = None


class UploadResult(BaseModel):
    ok: bool
    file_name: str | None = Field(default=None, serialization_alias="fileName")
    web_url: str | None = Field(default=None, serialization_alias="webUrl")
    id: str | None = None
    error: str | None = None
