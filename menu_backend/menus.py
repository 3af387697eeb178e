"""
Menu aggregate: ownership checks, section replacement and publication.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from menu_backend.db import RecordStore, check_menu_fields
from menu_backend.errors import (
    DuplicateKey,
    Forbidden,
    InvalidInput,
    NotFound,
    SlugUnavailable,
)
from menu_backend.records import MenuRecord, MenuSection, MenuStatus

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9-]{3,50}$")

EDITABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "background_type",
        "background_value",
        "font_family",
        "color_palette",
        "navigation_theme",
        "menu_logo",
        "logo_size",
        "section_counter",
    }
)


@dataclass(frozen=True)
class PublishedMenu:
    menu_id: str
    url: str
    slug: str
    title: str
    subtitle: Optional[str]


def validate_slug(slug: Any) -> str:
    if not isinstance(slug, str) or not SLUG_PATTERN.match(slug):
        raise InvalidInput(
            "Slug must be 3-50 characters of lowercase letters, numbers, and dashes"
        )
    return slug


def build_sections(raw_sections: Iterable[Any]) -> list[MenuSection]:
    """Coerce and validate a full section list before it replaces the old one."""
    sections: list[MenuSection] = []
    seen: set[int] = set()
    for raw in raw_sections:
        if isinstance(raw, MenuSection):
            section = raw
        else:
            try:
                section = MenuSection.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                raise InvalidInput(f"Malformed section: {exc}") from exc
        if not str(section.name).strip():
            raise InvalidInput(f"Section {section.id} needs a name")
        if section.id in seen:
            raise InvalidInput(f"Section id {section.id} appears more than once")
        seen.add(section.id)
        stray = [c for c in section.title_columns if c not in section.columns]
        if stray:
            raise InvalidInput(
                f"Title columns {stray} are not columns of section {section.id}"
            )
        sections.append(section)
    return sections


class MenuRepository:
    def __init__(
        self,
        store: RecordStore,
        public_base_url: str = "http://localhost:8000",
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.public_base_url = public_base_url.rstrip("/")
        self.clock = clock

    def published_url(self, slug: str) -> str:
        return f"{self.public_base_url}/menu/{slug}"

    def assert_ownership(self, menu_id: str, user_id: str) -> MenuRecord:
        """Return the menu if `user_id` owns it.

        Deleted menus count as missing: deletion is terminal, so nothing may
        mutate them afterwards.
        """
        menu = self.store.get_menu(menu_id)
        if menu is None or menu.status == MenuStatus.DELETED:
            raise NotFound("Menu not found")
        if menu.user_id != user_id:
            raise Forbidden("Access denied")
        return menu

    def create(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
        sections: Iterable[Any] = (),
        **styling,
    ) -> MenuRecord:
        name = (name or "").strip()
        if not name:
            raise InvalidInput("Menu name is required")
        unknown = set(styling) - (EDITABLE_FIELDS - {"name", "description"})
        if unknown:
            raise InvalidInput(f"Unknown menu fields: {', '.join(sorted(unknown))}")
        sections = build_sections(sections)
        user = self.store.get_user_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        if len(self.store.get_user_menus(user_id)) >= user.max_menus:
            raise Forbidden(f"Menu limit of {user.max_menus} reached for plan {user.plan}")
        menu = self.store.create_menu(
            MenuRecord(user_id=user_id, name=name, description=description, **styling)
        )
        if sections:
            self.store.save_menu_sections(menu.id, sections)
            menu = self.store.get_menu(menu.id)
        logger.info("Created menu %s for user %s", menu.id, user_id)
        return menu

    def list_for_user(self, user_id: str) -> list[MenuRecord]:
        return self.store.get_user_menus(user_id)

    def update(
        self,
        menu_id: str,
        user_id: str,
        fields: dict,
        sections: Optional[Iterable[Any]] = None,
        expected_revision: int | None = None,
    ) -> MenuRecord:
        self.assert_ownership(menu_id, user_id)
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise InvalidInput(f"Unknown menu fields: {', '.join(sorted(unknown))}")
        if "name" in fields:
            fields = dict(fields, name=(fields["name"] or "").strip())
            if not fields["name"]:
                raise InvalidInput("Menu name cannot be empty")
        check_menu_fields(fields)
        new_sections = build_sections(sections) if sections is not None else None
        # Sections first so a stale revision aborts before any field is written.
        if new_sections is not None:
            self.store.save_menu_sections(menu_id, new_sections, expected_revision)
        if fields:
            self.store.update_menu(menu_id, **fields)
        return self.store.get_menu(menu_id)

    def save_sections(
        self,
        menu_id: str,
        user_id: str,
        sections: Iterable[Any],
        expected_revision: int | None = None,
    ) -> int:
        self.assert_ownership(menu_id, user_id)
        return self.store.save_menu_sections(
            menu_id, build_sections(sections), expected_revision
        )

    def get_sections(self, menu_id: str, user_id: str) -> list[MenuSection]:
        self.assert_ownership(menu_id, user_id)
        return self.store.get_menu_sections(menu_id)

    def publish(
        self,
        menu_id: str,
        user_id: str,
        slug: str,
        title: str,
        subtitle: Optional[str] = None,
    ) -> PublishedMenu:
        validate_slug(slug)
        title = (title or "").strip()
        if not title:
            raise InvalidInput("Title is required")
        self.assert_ownership(menu_id, user_id)
        if self.store.is_slug_taken(slug, exclude_menu_id=menu_id):
            raise SlugUnavailable("This URL path is already taken")
        try:
            self.store.update_menu(
                menu_id,
                status=MenuStatus.PUBLISHED,
                published_slug=slug,
                published_title=title,
                published_subtitle=subtitle or None,
                published_at=self.clock(),
            )
        except DuplicateKey as exc:
            # Lost a race with another publisher between check and write.
            raise SlugUnavailable("This URL path is already taken") from exc
        logger.info("Published menu %s at %s", menu_id, slug)
        return PublishedMenu(
            menu_id=menu_id,
            url=self.published_url(slug),
            slug=slug,
            title=title,
            subtitle=subtitle or None,
        )

    def delete(self, menu_id: str, user_id: str) -> None:
        """Soft-delete the menu and hard-delete its sections."""
        self.assert_ownership(menu_id, user_id)
        self.store.update_menu(menu_id, status=MenuStatus.DELETED)
        self.store.delete_menu_sections(menu_id)
        logger.info("Deleted menu %s", menu_id)

    def get_published(self, slug: str) -> MenuRecord:
        menu = self.store.get_published_menu(validate_slug(slug))
        if menu is None:
            raise NotFound("Menu not found")
        return menu

    def check_slug_availability(self, slug: str, menu_id: str | None = None) -> bool:
        return not self.store.is_slug_taken(validate_slug(slug), exclude_menu_id=menu_id)
