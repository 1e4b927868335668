from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from mise_scanner.domain.barcodes import normalize_code
from mise_scanner.domain.models import InventoryCreate, InventoryResult
from mise_scanner.domain.ports import FileUploaderPort
from mise_scanner.repositories.inventory_repository import (
    InventoryRepository,
    parse_quantity,
    parse_weight,
)
from mise_scanner.services.background import BackgroundTaskRunner

logger = logging.getLogger(__name__)

MISSING_CODE_MESSAGE = "Código de barras é obrigatório"
ONEDRIVE_SYNCING = "sincronizando"
ONEDRIVE_NOT_CONFIGURED = "não configurado"


class InventoryService:
    def __init__(
        self,
        repository: InventoryRepository,
        uploader: FileUploaderPort | None = None,
        background: BackgroundTaskRunner | None = None,
    ) -> None:
        self._repo = repository
        self._uploader = uploader
        self._background = background

    async def register(self, payload: InventoryCreate) -> InventoryResult:
        code = normalize_code(payload.codigo)
        if not code:
            return InventoryResult(ok=False, error=MISSING_CODE_MESSAGE)

        quantity = parse_quantity(payload.quantidade, default=1)
        weight = parse_weight(payload.peso)
        registered_at = payload.data_hora or datetime.now()

        result = await self._repo.upsert(
            barcode=code,
            name=(payload.produto or "").strip(),
            quantity=quantity,
            weight=weight,
            registered_at=registered_at,
        )

        if result.updated:
            mensagem = f"Quantidade atualizada: {result.previous} + {result.added} = {result.quantity}"
        else:
            mensagem = "Produto adicionado ao inventário"

        return InventoryResult(
            ok=True,
            mensagem=mensagem,
            total=result.rows,
            atualizado=result.updated,
            onedrive=self._schedule_upload(self._repo.path),
        )

    def _schedule_upload(self, path: Path) -> str:
        if self._uploader is None or not self._uploader.is_configured() or self._background is None:
            return ONEDRIVE_NOT_CONFIGURED
        self._background.spawn(self._upload(path), name=f"onedrive-{path.name}")
        return ONEDRIVE_SYNCING

    async def _upload(self, path: Path) -> None:
        assert self._uploader is not None
        result = await self._uploader.upload(path)
        if not result.ok:
            logger.warning("OneDrive upload of %s failed: %s", path.name, result.error)
