# src/mise_scanner/api/routes/router.py
from fastapi import APIRouter

from mise_scanner.api.routes import inventory, lookup, onedrive, photos

api_router = APIRouter()
api_router.include_router(lookup.router)
api_router.include_router(inventory.router)
api_router.include_router(onedrive.router)
api_router.include_router(photos.router)
