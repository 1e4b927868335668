from typing import Annotated

from fastapi import APIRouter, Depends

from mise_scanner.api.dependencies import get_lookup_service
from mise_scanner.domain.models import LookupResult, NameSearchResponse, StatsResponse
from mise_scanner.services.lookup_service import LookupService

router = APIRouter(tags=["Lookup"])

LookupServiceDep = Annotated[LookupService, Depends(get_lookup_service)]


@router.get("/consulta/{codigo}", response_model=LookupResult, response_model_exclude_none=True)
async def lookup_barcode(service: LookupServiceDep, codigo: str) -> LookupResult:
    """
    Sucht einen Barcode in lokalem Katalog, Resolution Cache und externen Quellen.
    Nicht gefundene oder ungültige Codes liefern `ok: false`, keinen Fehlerstatus.
    """
    return await service.lookup(codigo)


@router.get("/api/buscar-por-nome/{termo}", response_model=NameSearchResponse)
async def search_by_name(service: LookupServiceDep, termo: str) -> NameSearchResponse:
    return NameSearchResponse(produtos=await service.search_by_name(termo))


@router.get("/api/stats", response_model=StatsResponse)
async def stats(service: LookupServiceDep) -> StatsResponse:
    return await service.stats()
