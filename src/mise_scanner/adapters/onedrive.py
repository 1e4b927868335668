# src/mise_scanner/adapters/onedrive.py
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

import httpx

from mise_scanner.domain.models import UploadResult
from mise_scanner.domain.ports import FileUploaderPort

logger = logging.getLogger(__name__)

TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
GRAPH_URL = "https://graph.microsoft.com/v1.0/me/drive"

SIMPLE_UPLOAD_LIMIT = 4 * 1024 * 1024
CHUNK_SIZE = 10 * 1024 * 1024
# Token wird 5 Minuten vor Ablauf erneuert
_TOKEN_MARGIN_SECONDS = 300


class OneDriveClient(FileUploaderPort):
    """Lädt Dateien per Microsoft Graph in einen OneDrive-Ordner hoch."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: str | None,
        client_secret: str | None,
        refresh_token: str | None,
        folder: str = "MISE-Inventario",
    ) -> None:
        self._client = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self.folder = folder
        self._access_token: str | None = None
        self._token_expiry = 0.0

    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret and self._refresh_token)

    def status(self) -> dict[str, Any]:
        return {
            "habilitado": self.is_configured(),
            "pasta": self.folder,
            "configurado": {
                "clientId": bool(self._client_id),
                "clientSecret": bool(self._client_secret),
                "refreshToken": bool(self._refresh_token),
            },
        }

    async def upload(self, local_path: Path) -> UploadResult:
        if not self.is_configured():
            logger.info("OneDrive not configured, skipping upload of %s", local_path)
            return UploadResult(ok=False, error="OneDrive não configurado")

        file_name = local_path.name
        try:
            token = await self._get_access_token()
            await self._ensure_folder(token)
            content = local_path.read_bytes()
            logger.info("OneDrive: uploading '%s' (%.1f KB)", file_name, len(content) / 1024)

            if len(content) < SIMPLE_UPLOAD_LIMIT:
                data = await self._simple_upload(token, file_name, content)
            else:
                data = await self._session_upload(token, file_name, content)
        except (httpx.HTTPError, OSError, KeyError, ValueError) as e:
            logger.exception("OneDrive: upload of '%s' failed", local_path)
            return UploadResult(ok=False, file_name=file_name, error=str(e))

        logger.info("OneDrive: upload of '%s' finished", file_name)
        return UploadResult(
            ok=True, file_name=file_name, web_url=data.get("webUrl"), id=data.get("id")
        )

    async def sync_files(self, paths: list[Path]) -> list[tuple[Path, UploadResult]]:
        results = []
        for path in paths:
            if path.exists():
                results.append((path, await self.upload(path)))
            else:
                results.append((path, UploadResult(ok=False, error="Arquivo não existe")))
        return results

    # ------------------------------------------------------------------
    # Graph-API Details
    # ------------------------------------------------------------------

    async def _get_access_token(self) -> str:
        if self._access_token and time.time() < self._token_expiry - _TOKEN_MARGIN_SECONDS:
            return self._access_token

        response = await self._client.post(
            TOKEN_URL,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": self._refresh_token,
                "grant_type": "refresh_token",
                "scope": "Files.ReadWrite.All offline_access",
            },
            timeout=30.0,
        )
        response.raise_for_status()
        payload = response.json()
        self._access_token = payload["access_token"]
        self._token_expiry = time.time() + float(payload.get("expires_in", 3600))
        return self._access_token

    async def _ensure_folder(self, token: str) -> None:
        headers = {"Authorization": f"Bearer {token}"}
        response = await self._client.get(
            f"{GRAPH_URL}/root:/{self.folder}", headers=headers, timeout=30.0
        )
        if response.status_code != 404:
            response.raise_for_status()
            return

        logger.info("OneDrive: creating folder '%s'", self.folder)
        created = await self._client.post(
            f"{GRAPH_URL}/root/children",
            json={
                "name": self.folder,
                "folder": {},
                "@microsoft.graph.conflictBehavior": "fail",
            },
            headers=headers,
            timeout=30.0,
        )
        created.raise_for_status()

    async def _simple_upload(self, token: str, file_name: str, content: bytes) -> dict[str, Any]:
        response = await self._client.put(
            f"{GRAPH_URL}/root:/{self.folder}/{file_name}:/content",
            content=content,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/octet-stream",
            },
            timeout=60.0,
        )
        response.raise_for_status()
        return response.json()

    async def _session_upload(self, token: str, file_name: str, content: bytes) -> dict[str, Any]:
        session = await self._client.post(
            f"{GRAPH_URL}/root:/{self.folder}/{file_name}:/createUploadSession",
            json={"item": {"@microsoft.graph.conflictBehavior": "replace"}},
            headers={"Authorization": f"Bearer {token}"},
            timeout=30.0,
        )
        session.raise_for_status()
        upload_url = session.json()["uploadUrl"]

        size = len(content)
        offset = 0
        while offset < size:
            end = min(offset + CHUNK_SIZE, size)
            response = await self._client.put(
                upload_url,
                content=content[offset:end],
                headers={
                    "Content-Length": str(end - offset),
                    "Content-Range": f"bytes {offset}-{end - 1}/{size}",
                },
                timeout=120.0,
            )
            response.raise_for_status()
            if response.status_code in (200, 201):
                return response.json()
            offset = end
            logger.info("OneDrive: upload %d%%", round(offset / size * 100))

        return {}
