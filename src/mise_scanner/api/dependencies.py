# src/mise_scanner/api/dependencies.py
import logging
from functools import lru_cache

import httpx
from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError

from mise_scanner.adapters.cosmos import CosmosAdapter
from mise_scanner.adapters.onedrive import OneDriveClient
from mise_scanner.adapters.open_facts import open_beauty_facts, open_food_facts, open_pet_food_facts
from mise_scanner.adapters.r2_storage import R2PhotoStore
from mise_scanner.adapters.upcitemdb import UpcItemDbAdapter
from mise_scanner.core.config import Settings, get_settings
from mise_scanner.domain.models import DataSource
from mise_scanner.domain.ports import AbstractResolutionCache, ProductSourcePort
from mise_scanner.repositories.collected_catalog import CollectedCatalog
from mise_scanner.repositories.dataset import LocalDatasetReader
from mise_scanner.repositories.inventory_repository import InventoryRepository
from mise_scanner.repositories.resolution_cache import JsonResolutionCache
from mise_scanner.repositories.sqlite_catalog import SQLiteCatalogRepository
from mise_scanner.services.background import BackgroundTaskRunner
from mise_scanner.services.inventory_service import InventoryService
from mise_scanner.services.lookup_service import LookupService
from mise_scanner.services.photo_service import PhotoService

logger = logging.getLogger(__name__)


# Shared HTTP Client (Connection Pooling)
@lru_cache
def get_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": get_settings().user_agent},
        follow_redirects=True,
    )


@lru_cache
def get_background_runner() -> BackgroundTaskRunner:
    return BackgroundTaskRunner()


def get_adapter_registry(
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> dict[DataSource, ProductSourcePort]:
    """Liefert die Registry aller verfügbaren Adapter."""
    timeout = settings.adapter_timeout_seconds
    return {
        DataSource.OPEN_FOOD_FACTS: open_food_facts(client, timeout),
        DataSource.OPEN_BEAUTY_FACTS: open_beauty_facts(client, timeout),
        DataSource.OPEN_PET_FOOD_FACTS: open_pet_food_facts(client, timeout),
        DataSource.UPCITEMDB: UpcItemDbAdapter(client, timeout),
        DataSource.COSMOS: CosmosAdapter(client, timeout=settings.scraper_timeout_seconds),
    }


# Singleton SQLite-Katalog (nur wenn die Datenbankdatei existiert)
_sqlite_catalog: SQLiteCatalogRepository | None = None
# Unbrauchbare Datenbank wird nur einmal versucht
_sqlite_unusable = False


async def get_sqlite_catalog(
    settings: Settings = Depends(get_settings),
) -> SQLiteCatalogRepository | None:
    global _sqlite_catalog, _sqlite_unusable
    if _sqlite_catalog is None and not _sqlite_unusable and settings.sqlite_path.is_file():
        repo = SQLiteCatalogRepository.for_path(settings.sqlite_path)
        try:
            await repo.initialize()
        except SQLAlchemyError:
            logger.warning(
                "SQLite database %s unusable, using file dataset and JSON cache",
                settings.sqlite_path,
                exc_info=True,
            )
            await repo.dispose()
            _sqlite_unusable = True
            return None
        _sqlite_catalog = repo
    return _sqlite_catalog


# Singleton Dataset Reader (eigener TTL-Index pro Prozess)
_dataset_reader: LocalDatasetReader | None = None


def get_dataset_reader(
    settings: Settings = Depends(get_settings),
    catalog: SQLiteCatalogRepository | None = Depends(get_sqlite_catalog),
) -> LocalDatasetReader:
    global _dataset_reader
    if _dataset_reader is None:
        _dataset_reader = LocalDatasetReader(
            csv_path=settings.dataset_csv_path,
            xlsx_path=settings.dataset_xlsx_path,
            catalog=catalog,
            ttl_seconds=settings.dataset_ttl_seconds,
        )
    return _dataset_reader


def get_resolution_cache(
    settings: Settings = Depends(get_settings),
    catalog: SQLiteCatalogRepository | None = Depends(get_sqlite_catalog),
) -> AbstractResolutionCache:
    if catalog is not None:
        return catalog
    return JsonResolutionCache(settings.cache_json_path)


def get_collected_catalog(settings: Settings = Depends(get_settings)) -> CollectedCatalog:
    return CollectedCatalog(settings.collected_xlsx_path)


def get_inventory_repository(settings: Settings = Depends(get_settings)) -> InventoryRepository:
    return InventoryRepository(settings.inventory_xlsx_path)


# Singleton R2 Store (boto3-Client ist teuer in der Erzeugung)
_photo_store: R2PhotoStore | None = None


def get_photo_store(settings: Settings = Depends(get_settings)) -> R2PhotoStore | None:
    global _photo_store
    if _photo_store is None and settings.r2_enabled:
        _photo_store = R2PhotoStore.from_credentials(
            account_id=settings.r2_account_id or "",
            access_key_id=settings.r2_access_key_id or "",
            secret_access_key=settings.r2_secret_access_key or "",
            bucket=settings.r2_bucket_name,
            public_url=settings.r2_public_url,
        )
    return _photo_store


def get_photo_service(
    settings: Settings = Depends(get_settings),
    store: R2PhotoStore | None = Depends(get_photo_store),
) -> PhotoService:
    return PhotoService(
        remote=store, photos_dir=settings.photos_dir, proxy_urls=settings.photo_proxy_urls
    )


# Singleton OneDrive Client (hält das Access Token im Speicher)
_onedrive_client: OneDriveClient | None = None


def get_onedrive_client(
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> OneDriveClient:
    global _onedrive_client
    if _onedrive_client is None:
        _onedrive_client = OneDriveClient(
            http_client=client,
            client_id=settings.onedrive_client_id,
            client_secret=settings.onedrive_client_secret,
            refresh_token=settings.onedrive_refresh_token,
            folder=settings.onedrive_folder,
        )
    return _onedrive_client


def get_lookup_service(
    settings: Settings = Depends(get_settings),
    dataset: LocalDatasetReader = Depends(get_dataset_reader),
    resolution_cache: AbstractResolutionCache = Depends(get_resolution_cache),
    adapter_registry: dict[DataSource, ProductSourcePort] = Depends(get_adapter_registry),
    photo_service: PhotoService = Depends(get_photo_service),
    catalog: CollectedCatalog = Depends(get_collected_catalog),
    onedrive: OneDriveClient = Depends(get_onedrive_client),
    background: BackgroundTaskRunner = Depends(get_background_runner),
) -> LookupService:
    return LookupService(
        dataset=dataset,
        resolution_cache=resolution_cache,
        adapter_registry=adapter_registry,
        parallel_sources=settings.parallel_sources,
        fallback_sources=settings.fallback_sources,
        parallel_lookup=settings.parallel_lookup,
        lookup_timeout=settings.lookup_timeout_seconds,
        photo_service=photo_service,
        catalog=catalog,
        uploader=onedrive,
        background=background,
        min_code_length=settings.min_code_length,
    )


def get_inventory_service(
    repository: InventoryRepository = Depends(get_inventory_repository),
    onedrive: OneDriveClient = Depends(get_onedrive_client),
    background: BackgroundTaskRunner = Depends(get_background_runner),
) -> InventoryService:
    return InventoryService(repository=repository, uploader=onedrive, background=background)


async def close_resources() -> None:
    """Shutdown: wartet auf Hintergrund-Uploads und schließt geteilte Clients."""
    await get_background_runner().shutdown()
    if _sqlite_catalog is not None:
        await _sqlite_catalog.dispose()
    await get_http_client().aclose()


def reset_singletons() -> None:
    """Setzt alle prozessweiten Singletons zurück (Tests)."""
    global _sqlite_catalog, _sqlite_unusable, _dataset_reader, _photo_store, _onedrive_client
    _sqlite_catalog = None
    _sqlite_unusable = False
    _dataset_reader = None
    _photo_store = None
    _onedrive_client = None
    get_http_client.cache_clear()
    get_background_runner.cache_clear()
