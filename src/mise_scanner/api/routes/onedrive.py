from typing import Annotated, Any

from fastapi import APIRouter, Depends

from mise_scanner.adapters.onedrive import OneDriveClient
from mise_scanner.api.dependencies import get_onedrive_client
from mise_scanner.core.config import Settings, get_settings

router = APIRouter(prefix="/api/onedrive", tags=["OneDrive"])

OneDriveDep = Annotated[OneDriveClient, Depends(get_onedrive_client)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


@router.get("/status")
async def onedrive_status(onedrive: OneDriveDep) -> dict[str, Any]:
    return onedrive.status()


@router.post("/sincronizar")
async def sync_spreadsheets(onedrive: OneDriveDep, settings: SettingsDep) -> dict[str, Any]:
    """Lädt Inventur- und Sammeltabelle (soweit vorhanden) sofort hoch."""
    if not onedrive.is_configured():
        return {"ok": False, "error": "OneDrive não configurado"}

    paths = [
        path
        for path in (settings.inventory_xlsx_path, settings.collected_xlsx_path)
        if path.is_file()
    ]
    results = await onedrive.sync_files(paths)
    return {
        "ok": True,
        "mensagem": "Sincronização concluída",
        "resultados": [
            {"arquivo": path.name, **result.model_dump(by_alias=True, exclude_none=True)}
            for path, result in results
        ],
    }
