# tests/conftest.py
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from mise_scanner.api.dependencies import get_adapter_registry, reset_singletons
from mise_scanner.core.config import Settings, get_settings
from mise_scanner.domain.models import DataSource, ExternalProduct
from mise_scanner.domain.ports import ProductNotFoundError, ProductSourcePort
from mise_scanner.main import app


class StubAdapter(ProductSourcePort):
    """In-memory product source that counts its calls."""

    def __init__(self, source: DataSource, products: dict[str, str] | None = None) -> None:
        self.source = source
        self.products = products or {}
        self.calls: list[str] = []

    async def fetch_by_barcode(self, barcode: str) -> ExternalProduct:
        self.calls.append(barcode)
        if barcode not in self.products:
            raise ProductNotFoundError(barcode, self.source)
        return ExternalProduct(barcode=barcode, name=self.products[barcode], source=self.source)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(tmp_path: Path, data_dir: Path) -> Settings:
    return Settings(
        data_dir=data_dir,
        public_dir=tmp_path / "public",
        dataset_csv_path=data_dir / "PARA_BUSCAR_DO_SITE.csv",
        dataset_xlsx_path=data_dir / "PARA_BUSCAR_DO_SITE.xlsx",
        sqlite_path=data_dir / "produtos.db",
        cache_json_path=data_dir / "produtos.json",
        collected_xlsx_path=data_dir / "OK BASE DO APP COLETADO.xlsx",
        inventory_xlsx_path=data_dir / "Inventário.xlsx",
        photos_dir=data_dir / "fotos_produtos",
        parallel_sources=["openfoodfacts", "upcitemdb"],
        fallback_sources=["cosmos"],
        lookup_timeout_seconds=5.0,
        r2_account_id=None,
        r2_access_key_id=None,
        r2_secret_access_key=None,
        onedrive_client_id=None,
        onedrive_client_secret=None,
        onedrive_refresh_token=None,
    )


@pytest.fixture
def stub_registry() -> dict[DataSource, StubAdapter]:
    return {
        DataSource.OPEN_FOOD_FACTS: StubAdapter(DataSource.OPEN_FOOD_FACTS),
        DataSource.UPCITEMDB: StubAdapter(DataSource.UPCITEMDB),
        DataSource.COSMOS: StubAdapter(DataSource.COSMOS),
    }


@pytest.fixture
def client(
    test_settings: Settings, stub_registry: dict[DataSource, StubAdapter]
) -> Generator[TestClient, None, None]:
    # Singletons (Dataset-Index, OneDrive-Token, ...) pro Test neu aufbauen
    reset_singletons()
    app.dependency_overrides[get_settings] = lambda: test_settings
    # Keine echten Netzwerkzugriffe in Integrationstests
    app.dependency_overrides[get_adapter_registry] = lambda: stub_registry
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
        reset_singletons()
