"""Cloudflare R2 object storage through the S3-compatible API."""

from __future__ import annotations

import io
import logging
import os
import re
from typing import Any, Mapping, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image

from flyergen.config import StorageSettings
from flyergen.errors import SignedUrlGenerationFailed, StorageError

logger = logging.getLogger(__name__)

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}

_CONVERTIBLE_SUFFIX_RE = re.compile(r"\.(png|jpg|jpeg|gif)$", re.IGNORECASE)
WEBP_QUALITY = 85


def generate_image_key(user_id: str, image_id: str, extension: str = "png") -> str:
    return f"{user_id}/{image_id}.{extension}"


def file_extension(content_type: str) -> str:
    return EXTENSIONS.get(content_type.split(";")[0].strip().lower(), "png")


def webp_key(key: str) -> str:
    return _CONVERTIBLE_SUFFIX_RE.sub(".webp", key)


def convert_to_webp(data: bytes, quality: int = WEBP_QUALITY) -> bytes:
    """Re-encode image bytes as WebP. Raises ``OSError`` if Pillow cannot read them."""
    out = io.BytesIO()
    with Image.open(io.BytesIO(data)) as img:
        img.save(out, format="WEBP", quality=quality)
    return out.getvalue()


def r2_endpoint(account_id: str) -> str:
    return f"https://{account_id}.r2.cloudflarestorage.com"


class ObjectStorage(Protocol):
    def sign(self, key: str, expires_in: int) -> str: ...

    def upload(self, key: str, data: bytes, content_type: str) -> str: ...

    def delete(self, key: str) -> None: ...


class R2Storage:
    def __init__(
        self,
        bucket: str,
        endpoint_url: str,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        region: str = "auto",
        client: Any = None,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._region = region
        self._client = client

    @classmethod
    def from_settings(
        cls, settings: StorageSettings, environ: Optional[Mapping[str, str]] = None
    ) -> "R2Storage":
        env = environ if environ is not None else os.environ
        if not settings.bucket:
            raise StorageError("[storage] bucket is not configured")
        endpoint = settings.endpoint_url
        if endpoint is None:
            if not settings.account_id:
                raise StorageError("[storage] needs either endpoint_url or account_id")
            endpoint = r2_endpoint(settings.account_id)
        return cls(
            bucket=settings.bucket,
            endpoint_url=endpoint,
            access_key_id=env.get(settings.access_key_env),
            secret_access_key=env.get(settings.secret_key_env),
            region=settings.region,
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                region_name=self._region,
            )
        return self._client

    def sign(self, key: str, expires_in: int) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise SignedUrlGenerationFailed(key, str(e)) from e

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload '{key}': {e}", object_key=key) from e
        logger.info("Uploaded %d bytes to r2://%s/%s", len(data), self.bucket, key)
        return key

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete '{key}': {e}", object_key=key) from e
        logger.info("Deleted r2://%s/%s", self.bucket, key)
