"""
Logo and background image uploads.

The browser editor sends images as base64 data URLs. They are decoded, size
checked, written to object storage and, when a menu id is given, attached to
that menu.
"""

from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from menu_backend.errors import InvalidInput
from menu_backend.menus import MenuRepository
from menu_backend.storage import StorageClient

logger = logging.getLogger(__name__)

LOGO_MAX_BYTES = 5 * 1024 * 1024
BACKGROUND_MAX_BYTES = 4 * 1024 * 1024

ALLOWED_CONTENT_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

DATA_URL_PATTERN = re.compile(r"^data:(?P<type>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.S)


@dataclass(frozen=True)
class StoredUpload:
    url: str
    path: str
    file_name: str
    content_type: str
    size: int


def decode_image(file_data: str, file_name: str) -> tuple[str, bytes]:
    """Return (content type, bytes) of a data URL or bare base64 payload."""
    match = DATA_URL_PATTERN.match(file_data or "")
    if match:
        content_type, encoded = match.group("type").lower(), match.group("data")
    else:
        content_type = mimetypes.guess_type(file_name or "")[0] or ""
        encoded = file_data or ""
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise InvalidInput("Only PNG, JPEG, GIF and WebP images are supported")
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInput("File data is not valid base64") from exc
    if not data:
        raise InvalidInput("File is empty")
    return content_type, data


class UploadService:
    def __init__(self, storage: StorageClient, menus: MenuRepository):
        self.storage = storage
        self.menus = menus

    def upload_logo(
        self, user_id: str, file_data: str, file_name: str, menu_id: Optional[str] = None
    ) -> StoredUpload:
        if menu_id:
            self.menus.assert_ownership(menu_id, user_id)
        upload = self._store("logos", user_id, file_data, file_name, LOGO_MAX_BYTES)
        if menu_id:
            self.menus.update(menu_id, user_id, {"menu_logo": upload.url})
        return upload

    def upload_background(
        self, user_id: str, file_data: str, file_name: str, menu_id: Optional[str] = None
    ) -> StoredUpload:
        if menu_id:
            self.menus.assert_ownership(menu_id, user_id)
        upload = self._store(
            "backgrounds", user_id, file_data, file_name, BACKGROUND_MAX_BYTES
        )
        if menu_id:
            self.menus.update(
                menu_id,
                user_id,
                {"background_type": "image", "background_value": upload.url},
            )
        return upload

    def _store(
        self, kind: str, user_id: str, file_data: str, file_name: str, max_bytes: int
    ) -> StoredUpload:
        if not file_data or not file_name:
            raise InvalidInput("File data and name are required")
        content_type, data = decode_image(file_data, file_name)
        if len(data) > max_bytes:
            raise InvalidInput(
                f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB."
            )
        path = f"{kind}/{user_id}/{uuid.uuid4().hex}{ALLOWED_CONTENT_TYPES[content_type]}"
        self.storage.put_bytes(path, data, content_type)
        logger.info("Stored %s upload %s (%d bytes)", kind, path, len(data))
        return StoredUpload(
            url=self.storage.public_url(path),
            path=path,
            file_name=file_name,
            content_type=content_type,
            size=len(data),
        )
