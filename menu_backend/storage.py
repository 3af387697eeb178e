"""
Object storage for uploaded menu images: local directory or S3-compatible bucket.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from menu_backend.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def put_bytes(self, path: str, data: bytes, content_type: str) -> None:
        ...

    def public_url(self, path: str) -> str:
        ...


@dataclass
class LocalStorageClient:
    """Writes objects under a directory served at `base_url`."""

    root: str
    base_url: str = "/uploads"

    def _resolve(self, path: str) -> Path:
        root = Path(self.root).resolve()
        target = (root / path).resolve()
        if root not in target.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return target

    def put_bytes(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".part")
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as exc:
            logger.error("Failed to store %s: %s", path, exc)
            raise StorageUnavailable(f"Failed to store {path}") from exc

    def public_url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path}"


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client.
    """

    bucket: str
    region: str
    endpoint: Optional[str]
    access_key_id: Optional[str]
    secret_access_key: Optional[str]
    public_base_url: Optional[str] = None

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def put_bytes(self, path: str, data: bytes, content_type: str) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Failed to upload %s to bucket %s: %s", path, self.bucket, exc)
            raise StorageUnavailable(f"Failed to store {path}") from exc

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{path}"
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{path}"
        return f"https://{self.bucket}.s3.amazonaws.com/{path}"
