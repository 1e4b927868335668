from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import FileResponse

from mise_scanner.adapters.r2_storage import R2PhotoStore
from mise_scanner.api.dependencies import get_photo_store
from mise_scanner.core.config import Settings, get_settings

router = APIRouter(tags=["Photos"])

SettingsDep = Annotated[Settings, Depends(get_settings)]
PhotoStoreDep = Annotated[R2PhotoStore | None, Depends(get_photo_store)]

REMOTE_CACHE_CONTROL = "public, max-age=3600"


def safe_child(base: Path, name: str) -> Path | None:
    """Resolves `name` below `base`; None if it escapes the directory or does not exist."""
    root = base.resolve()
    candidate = (root / name).resolve()
    if root != candidate and root not in candidate.parents:
        return None
    if not candidate.is_file():
        return None
    return candidate


@router.get("/fotos/{filename}")
async def local_photo(settings: SettingsDep, filename: str) -> FileResponse:
    path = safe_child(settings.photos_dir, filename)
    if path is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Foto não encontrada")
    return FileResponse(path)


@router.get("/foto-r2/{filename}")
async def remote_photo(store: PhotoStoreDep, filename: str) -> Response:
    """Proxy für Fotos aus dem R2-Bucket."""
    if store is None or "/" in filename or "\\" in filename or filename.startswith("."):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Foto não encontrada")
    photo = await store.download(filename)
    if photo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Foto não encontrada")
    return Response(
        content=photo.content,
        media_type=photo.content_type,
        headers={"Cache-Control": REMOTE_CACHE_CONTROL},
    )
