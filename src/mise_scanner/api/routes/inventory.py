import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from mise_scanner.api.dependencies import get_inventory_service
from mise_scanner.domain.models import InventoryCreate, InventoryResult
from mise_scanner.domain.ports import StorageError
from mise_scanner.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Inventory"])

InventoryServiceDep = Annotated[InventoryService, Depends(get_inventory_service)]


@router.post("/inventario", response_model=InventoryResult, response_model_exclude_none=True)
async def register_inventory(
    service: InventoryServiceDep,
    payload: InventoryCreate,
) -> InventoryResult:
    """
    Erfasst einen Barcode in der Inventur-Tabelle. Bekannte Codes erhöhen die Menge.
    """
    try:
        return await service.register(payload)
    except StorageError as e:
        logger.exception("Inventory write failed")
        return InventoryResult(ok=False, error=str(e))
