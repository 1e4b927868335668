# src/mise_scanner/core/config.py
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    app_name: str = "MISE Scanner"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    port: int = 10000

    # CORS
    cors_origins: list[str] = Field(default=["*"])

    # Dateien und Verzeichnisse
    data_dir: Path = Path("data")
    public_dir: Path = Path("public")
    dataset_csv_path: Path = Path("data/PARA_BUSCAR_DO_SITE.csv")
    dataset_xlsx_path: Path = Path("data/PARA_BUSCAR_DO_SITE.xlsx")
    sqlite_path: Path = Path("data/produtos.db")
    cache_json_path: Path = Path("data/produtos.json")
    collected_xlsx_path: Path = Path("data/OK BASE DO APP COLETADO.xlsx")
    inventory_xlsx_path: Path = Path("data/Inventário.xlsx")
    photos_dir: Path = Path("data/fotos_produtos")

    # Lookup
    dataset_ttl_seconds: int = 300
    min_code_length: int = 8
    parallel_lookup: bool = True
    parallel_sources: list[str] = Field(
        default=["openfoodfacts", "openbeautyfacts", "openpetfoodfacts", "upcitemdb"]
    )
    fallback_sources: list[str] = Field(default=["cosmos"])
    lookup_timeout_seconds: float = 30.0
    adapter_timeout_seconds: float = 10.0
    scraper_timeout_seconds: float = 20.0
    user_agent: str = "MISE-Scanner/1.0 (contact@mise.ws)"

    # Cloudflare R2 (S3-kompatibel)
    r2_account_id: str | None = None
    r2_access_key_id: str | None = None
    r2_secret_access_key: str | None = None
    r2_bucket_name: str = "mise"
    r2_public_url: str | None = None
    # True: Foto-URLs zeigen auf den eigenen /foto-r2 Proxy statt auf R2
    photo_proxy_urls: bool = False

    # OneDrive (Microsoft Graph)
    onedrive_client_id: str | None = None
    onedrive_client_secret: str | None = None
    onedrive_refresh_token: str | None = None
    onedrive_folder: str = "MISE-Inventario"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def r2_enabled(self) -> bool:
        return bool(self.r2_account_id and self.r2_access_key_id and self.r2_secret_access_key)

    @property
    def onedrive_enabled(self) -> bool:
        return bool(
            self.onedrive_client_id and self.onedrive_client_secret and self.onedrive_refresh_token
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
