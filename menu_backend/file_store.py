"""
JSON-file record store for local development and single-process deployments.

Each entity kind lives in its own document under the data directory:

    users.json, menus.json, menu_sections.json, sessions.json

Every document is ``{"version": 1, "records": [...]}``. A bare JSON array (the
layout written by older builds) is still accepted on read and upgraded on the
next write.

All read-modify-write cycles hold one re-entrant lock, so section replacement
and the published-slug check are atomic within the process. Several processes
sharing one data directory are not supported.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

from menu_backend.db import check_menu_fields, check_section_ids, check_user_fields
from menu_backend.errors import Conflict, DuplicateKey, NotFound, StorageUnavailable
from menu_backend.records import (
    MenuRecord,
    MenuSection,
    MenuStatus,
    SessionRecord,
    UserRecord,
    UserSummary,
    normalize_email,
)

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 1
USERS = "users"
MENUS = "menus"
SECTIONS = "menu_sections"
SESSIONS = "sessions"
COLLECTIONS = (USERS, MENUS, SECTIONS, SESSIONS)


class FileRecordStore:
    """Record store backed by one JSON document per entity kind."""

    def __init__(self, data_dir: str | Path, clock: Callable[[], float] = time.time):
        self.data_dir = Path(data_dir)
        self.clock = clock
        self._lock = threading.RLock()
        self.initialize()

    def initialize(self) -> None:
        with self._lock:
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageUnavailable(
                    f"Cannot create data directory {self.data_dir}"
                ) from exc
            for name in COLLECTIONS:
                if not self._path(name).exists():
                    self._write(name, [])

    # Users

    def create_user(self, user: UserRecord) -> UserRecord:
        with self._lock:
            users = self._read(USERS)
            email = normalize_email(user.email)
            if any(u["email"] == email for u in users):
                raise DuplicateKey(f"User with email {email} already exists")
            if user.external_id and any(
                u.get("external_id") == user.external_id for u in users
            ):
                raise DuplicateKey("External identity is already linked")
            now = self.clock()
            record = user.as_dict()
            record.update(email=email, created_at=now, updated_at=now)
            users.append(record)
            self._write(USERS, users)
            return UserRecord.from_dict(record)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        email = normalize_email(email)
        return self._find_user(lambda u: u["email"] == email)

    def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        return self._find_user(lambda u: u["id"] == user_id)

    def get_user_by_external_id(self, external_id: str) -> Optional[UserRecord]:
        return self._find_user(lambda u: u.get("external_id") == external_id)

    def update_user(self, user_id: str, **fields) -> UserRecord:
        check_user_fields(fields)
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        with self._lock:
            users = self._read(USERS)
            record = _find(users, user_id)
            if record is None:
                raise NotFound(f"User {user_id} not found")
            for key in ("email", "external_id"):
                value = fields.get(key)
                if value and any(
                    u.get(key) == value and u["id"] != user_id for u in users
                ):
                    raise DuplicateKey(f"Another user already has this {key}")
            record.update(fields)
            record["updated_at"] = self.clock()
            self._write(USERS, users)
            return UserRecord.from_dict(record)

    def update_user_last_active(self, user_id: str) -> None:
        with self._lock:
            users = self._read(USERS)
            record = _find(users, user_id)
            if record is None:
                raise NotFound(f"User {user_id} not found")
            now = self.clock()
            record["last_active"] = now
            record["updated_at"] = now
            self._write(USERS, users)

    def get_all_users(self) -> list[UserSummary]:
        with self._lock:
            users = self._read(USERS)
            menus = self._read(MENUS)
        summaries = []
        for user in sorted(users, key=lambda u: u["created_at"], reverse=True):
            owned = [
                m
                for m in menus
                if m["user_id"] == user["id"]
                and m["status"] != MenuStatus.DELETED.value
            ]
            summaries.append(
                UserSummary(
                    user=UserRecord.from_dict(user),
                    menu_count=len(owned),
                    published_count=sum(
                        1 for m in owned if m["status"] == MenuStatus.PUBLISHED.value
                    ),
                )
            )
        return summaries

    # Menus

    def create_menu(self, menu: MenuRecord) -> MenuRecord:
        with self._lock:
            if self.get_user_by_id(menu.user_id) is None:
                raise NotFound(f"User {menu.user_id} not found")
            menus = self._read(MENUS)
            now = self.clock()
            record = menu.as_dict(include_sections=False)
            record.update(
                status=MenuStatus.DRAFT.value,
                revision=0,
                created_at=now,
                updated_at=now,
            )
            menus.append(record)
            self._write(MENUS, menus)
            return MenuRecord.from_dict(record)

    def get_menu(self, menu_id: str) -> Optional[MenuRecord]:
        with self._lock:
            record = _find(self._read(MENUS), menu_id)
            if record is None:
                return None
            return self._with_sections(record)

    def get_user_menus(self, user_id: str) -> list[MenuRecord]:
        with self._lock:
            owned = [
                m
                for m in self._read(MENUS)
                if m["user_id"] == user_id and m["status"] != MenuStatus.DELETED.value
            ]
            owned.sort(key=lambda m: m["updated_at"], reverse=True)
            return [self._with_sections(m) for m in owned]

    def get_published_menu(self, slug: str) -> Optional[MenuRecord]:
        with self._lock:
            for record in self._read(MENUS):
                if (
                    record.get("published_slug") == slug
                    and record["status"] == MenuStatus.PUBLISHED.value
                ):
                    return self._with_sections(record)
            return None

    def is_slug_taken(self, slug: str, exclude_menu_id: str | None = None) -> bool:
        with self._lock:
            return _slug_holder(self._read(MENUS), slug, exclude_menu_id) is not None

    def update_menu(self, menu_id: str, **fields) -> MenuRecord:
        fields = check_menu_fields(fields)
        if "status" in fields:
            fields["status"] = fields["status"].value
        with self._lock:
            menus = self._read(MENUS)
            record = _find(menus, menu_id)
            if record is None:
                raise NotFound(f"Menu {menu_id} not found")
            status = fields.get("status", record["status"])
            slug = fields.get("published_slug", record.get("published_slug"))
            if status == MenuStatus.PUBLISHED.value and slug:
                if _slug_holder(menus, slug, menu_id):
                    raise DuplicateKey(
                        f"Slug {slug} is held by another published menu"
                    )
            record.update(fields)
            record["updated_at"] = self.clock()
            self._write(MENUS, menus)
            return self._with_sections(record)

    # Sections

    def get_menu_sections(self, menu_id: str) -> list[MenuSection]:
        with self._lock:
            return self._sections_for(self._read(SECTIONS), menu_id)

    def save_menu_sections(
        self,
        menu_id: str,
        sections: Iterable[MenuSection],
        expected_revision: int | None = None,
    ) -> int:
        sections = list(sections)
        check_section_ids(sections)
        with self._lock:
            menus = self._read(MENUS)
            record = _find(menus, menu_id)
            if record is None:
                raise NotFound(f"Menu {menu_id} not found")
            revision = record.get("revision", 0)
            if expected_revision is not None and revision != expected_revision:
                raise Conflict(
                    f"Menu {menu_id} is at revision {revision}, "
                    f"not {expected_revision}"
                )
            stored = [s for s in self._read(SECTIONS) if s["menu_id"] != menu_id]
            for section in sections:
                row = section.as_dict()
                row["menu_id"] = menu_id
                stored.append(row)
            self._write(SECTIONS, stored)
            record["revision"] = revision + 1
            record["updated_at"] = self.clock()
            self._write(MENUS, menus)
            return record["revision"]

    def delete_menu_sections(self, menu_id: str) -> None:
        with self._lock:
            stored = self._read(SECTIONS)
            kept = [s for s in stored if s["menu_id"] != menu_id]
            if len(kept) != len(stored):
                self._write(SECTIONS, kept)

    # Sessions

    def create_session(
        self, session_id: str, user_id: str, expires_at: float
    ) -> SessionRecord:
        with self._lock:
            sessions = self._read(SESSIONS)
            if _find(sessions, session_id) is not None:
                raise DuplicateKey("Session id already in use")
            record = SessionRecord(
                id=session_id,
                user_id=user_id,
                expires_at=expires_at,
                created_at=self.clock(),
            )
            sessions.append(record.as_dict())
            self._write(SESSIONS, sessions)
            return record

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            data = _find(self._read(SESSIONS), session_id)
            if data is None:
                return None
            record = SessionRecord.from_dict(data)
            if record.is_expired(self.clock()):
                self.delete_session(session_id)
                return None
            return record

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            sessions = self._read(SESSIONS)
            kept = [s for s in sessions if s["id"] != session_id]
            if len(kept) != len(sessions):
                self._write(SESSIONS, kept)

    # Documents

    def _path(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def _read(self, name: str) -> list[dict]:
        path = self._path(name)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to read %s: %s", path, exc)
            raise StorageUnavailable(f"Failed to read {path}") from exc
        if isinstance(data, list):
            return data
        if not isinstance(data, dict) or data.get("version") != DOCUMENT_VERSION:
            raise StorageUnavailable(
                f"Unsupported document format in {path}"
            )
        return list(data.get("records", []))

    def _write(self, name: str, records: list[dict]) -> None:
        """Write a document atomically."""
        path = self._path(name)
        payload = {"version": DOCUMENT_VERSION, "records": records}
        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w", dir=self.data_dir, suffix=".tmp", delete=False, encoding="utf-8"
            ) as tf:
                temp_path = tf.name
                json.dump(payload, tf, indent=2, ensure_ascii=False)
            os.replace(temp_path, path)
        except OSError as exc:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)
            logger.error("Failed to write %s: %s", path, exc)
            raise StorageUnavailable(f"Failed to write {path}") from exc

    def _find_user(self, predicate) -> Optional[UserRecord]:
        with self._lock:
            for record in self._read(USERS):
                if predicate(record):
                    return UserRecord.from_dict(record)
            return None

    def _sections_for(self, stored: list[dict], menu_id: str) -> list[MenuSection]:
        rows = sorted(
            (s for s in stored if s["menu_id"] == menu_id),
            key=lambda s: s["id"],
        )
        return [MenuSection.from_dict(row) for row in rows]

    def _with_sections(self, record: dict) -> MenuRecord:
        menu = MenuRecord.from_dict(record)
        menu.sections = self._sections_for(self._read(SECTIONS), record["id"])
        return menu


def _find(records: list[dict], record_id: str) -> Optional[dict]:
    for record in records:
        if record["id"] == record_id:
            return record
    return None


def _slug_holder(
    menus: list[dict], slug: str, exclude_menu_id: str | None
) -> Optional[str]:
    for record in menus:
        if (
            record.get("published_slug") == slug
            and record["status"] == MenuStatus.PUBLISHED.value
            and record["id"] != exclude_menu_id
        ):
            return record["id"]
    return None
