# src/mise_scanner/adapters/r2_storage.py
from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

logger = logging.getLogger(__name__)

PHOTO_PREFIX = "fotos/"


class StoredPhoto(BaseModel):
    content: bytes
    content_type: str

    model_config = {"frozen": True}


class R2PhotoStore:
    """
    Zugriff auf Produktfotos im Cloudflare-R2-Bucket (S3-API).
    boto3 ist synchron, daher laufen alle Aufrufe in einem Worker-Thread.
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        public_url: str | None = None,
        url_expires_seconds: int = 3600,
    ) -> None:
        self._client = client
        self._bucket = bucket
        self._public_url = public_url.rstrip("/") if public_url else None
        self._expires = url_expires_seconds

    @classmethod
    def from_credentials(
        cls,
        account_id: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
        public_url: str | None = None,
    ) -> R2PhotoStore:
        client = boto3.client(
            "s3",
            endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name="auto",
            config=Config(s3={"addressing_style": "path"}),
        )
        return cls(client, bucket, public_url)

    @staticmethod
    def key_for(filename: str) -> str:
        return f"{PHOTO_PREFIX}{filename}"

    async def exists(self, filename: str) -> bool:
        try:
            await asyncio.to_thread(
                self._client.head_object, Bucket=self._bucket, Key=self.key_for(filename)
            )
            return True
        except ClientError as e:
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            code = e.response.get("Error", {}).get("Code")
            if status == 404 or code in ("404", "NoSuchKey", "NotFound"):
                return False
            logger.warning("R2: could not check %s: %s", filename, e)
            return False
        except BotoCoreError as e:
            logger.warning("R2: could not check %s: %s", filename, e)
            return False

    async def url_for(self, filename: str) -> str | None:
        """Public URL if the bucket is exposed, otherwise a presigned GET URL."""
        if self._public_url:
            return f"{self._public_url}/{self.key_for(filename)}"
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": self.key_for(filename)},
                ExpiresIn=self._expires,
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning("R2: could not sign URL for %s: %s", filename, e)
            return None

    async def download(self, filename: str) -> StoredPhoto | None:
        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self._bucket, Key=self.key_for(filename)
            )
            content = await asyncio.to_thread(response["Body"].read)
        except (ClientError, BotoCoreError) as e:
            logger.info("R2: could not download %s: %s", filename, e)
            return None
        return StoredPhoto(
            content=content,
            content_type=response.get("ContentType") or "image/jpeg",
        )
