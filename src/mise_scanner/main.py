# src/mise_scanner/main.py
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from mise_scanner.api.dependencies import close_resources
from mise_scanner.api.routes.photos import safe_child
from mise_scanner.api.routes.router import api_router
from mise_scanner.core.config import Settings, get_settings
from mise_scanner.core.metrics import REQUEST_COUNT

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        route = request.scope.get("route")
        REQUEST_COUNT.labels(
            method=request.method,
            path=getattr(route, "path", request.url.path),
            status_code=str(response.status_code),
        ).inc()
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("%s %s starting", settings.app_name, settings.app_version)
    yield
    # Shutdown: Uploads abwarten, Clients schließen
    await close_resources()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Metrics Middleware
app.add_middleware(MetricsMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)

app.include_router(api_router)


@app.get("/healthz", tags=["Health"])
async def health_check() -> dict[str, str]:
    return {"status": "ok", "version": settings.app_version}


@app.get("/metrics", tags=["Monitoring"])
async def metrics_endpoint() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Muss als letzte Route registriert werden
@app.get("/{full_path:path}", include_in_schema=False)
async def frontend(
    app_settings: Annotated[Settings, Depends(get_settings)],
    full_path: str,
) -> Response:
    """Liefert Dateien aus dem Frontend-Verzeichnis, sonst die index.html (SPA)."""
    if full_path:
        asset = safe_child(app_settings.public_dir, full_path)
        if asset is not None:
            return FileResponse(asset)

    index = app_settings.public_dir / "index.html"
    if index.is_file():
        return FileResponse(index)
    return JSONResponse(
        status_code=404, content={"ok": False, "error": "Frontend não encontrado"}
    )
