"""
Backend selection and dependency wiring for the FastAPI app.

The storage backend is chosen once, when the application is built, and the
resulting services are handed to every request through `app.state`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from menu_backend.accounts import AccountService
from menu_backend.config import Settings
from menu_backend.db import PostgresRecordStore, RecordStore
from menu_backend.errors import StorageUnavailable, Unauthenticated
from menu_backend.file_store import FileRecordStore
from menu_backend.menus import MenuRepository
from menu_backend.records import UserRecord
from menu_backend.sessions import SessionDirectory
from menu_backend.storage import LocalStorageClient, S3StorageClient, StorageClient
from menu_backend.uploads import UploadService

logger = logging.getLogger(__name__)


def build_record_store(settings: Settings) -> RecordStore:
    """
    Pick the relational store when a database URL is configured and reachable,
    the JSON-file store otherwise.
    """
    if settings.database_url and not settings.use_file_backend:
        try:
            store = PostgresRecordStore(settings.database_url)
            logger.info("Using relational record store")
            return store
        except StorageUnavailable as exc:
            logger.warning(
                "Database unreachable (%s), falling back to file storage in %s",
                exc,
                settings.data_dir,
            )
    else:
        logger.info("No database configured, using file storage in %s", settings.data_dir)
    return FileRecordStore(settings.data_dir)


def build_storage_client(settings: Settings) -> StorageClient:
    if settings.s3_bucket:
        return S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            public_base_url=settings.s3_public_base_url,
        )
    return LocalStorageClient(
        root=settings.uploads_dir, base_url=settings.uploads_base_url
    )


@dataclass
class Services:
    settings: Settings
    store: RecordStore
    sessions: SessionDirectory
    accounts: AccountService
    menus: MenuRepository
    uploads: UploadService


def build_services(
    settings: Settings,
    store: Optional[RecordStore] = None,
    storage: Optional[StorageClient] = None,
    bcrypt_rounds: int = 12,
) -> Services:
    store = store or build_record_store(settings)
    sessions = SessionDirectory(store, ttl_seconds=settings.session_ttl_seconds)
    menus = MenuRepository(store, public_base_url=settings.public_base_url)
    return Services(
        settings=settings,
        store=store,
        sessions=sessions,
        accounts=AccountService(
            store,
            sessions,
            admin_username=settings.admin_username,
            admin_password=settings.admin_password,
            bcrypt_rounds=bcrypt_rounds,
        ),
        menus=menus,
        uploads=UploadService(storage or build_storage_client(settings), menus),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_session_token(
    request: Request, services: Services = Depends(get_services)
) -> Optional[str]:
    """Session token from the session cookie or an `Authorization: Bearer` header."""
    token = request.cookies.get(services.settings.session_cookie_name)
    if token:
        return token
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def get_current_user(
    token: Optional[str] = Depends(get_session_token),
    services: Services = Depends(get_services),
) -> UserRecord:
    if not token:
        raise Unauthenticated("Authentication required")
    return services.sessions.resolve(token)
