"""
Plain records passed between the stores, the services and the HTTP layer.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Optional


class MenuStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    DELETED = "deleted"


def new_id() -> str:
    return uuid.uuid4().hex


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass
class UserRecord:
    email: str
    name: str
    id: str = field(default_factory=new_id)
    password_hash: Optional[str] = None
    external_id: Optional[str] = None
    plan: str = "free"
    max_menus: int = 5
    restaurant: Optional[str] = None
    avatar: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    business_name: Optional[str] = None
    business_type: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    marketing_opt_in: bool = False
    created_at: float = 0.0
    updated_at: float = 0.0
    last_active: Optional[float] = None

    def as_dict(self) -> dict:
        return asdict(self)

    def as_public_dict(self) -> dict:
        data = self.as_dict()
        data.pop("password_hash", None)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "UserRecord":
        return cls(**_known_fields(cls, data))


@dataclass
class UserSummary:
    user: UserRecord
    menu_count: int = 0
    published_count: int = 0


@dataclass
class SessionRecord:
    id: str
    user_id: str
    expires_at: float
    created_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SessionRecord":
        return cls(**_known_fields(cls, data))


@dataclass
class MenuSection:
    id: int
    name: str
    type: str
    columns: list[str] = field(default_factory=list)
    title_columns: list[str] = field(default_factory=list)
    items: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MenuSection":
        columns = list(data.get("columns") or [])
        title_columns = data.get("title_columns")
        return cls(
            id=int(data["id"]),
            name=data["name"],
            type=data["type"],
            columns=columns,
            title_columns=list(columns if title_columns is None else title_columns),
            items=[dict(item) for item in data.get("items") or []],
        )


@dataclass
class MenuRecord:
    user_id: str
    name: str
    id: str = field(default_factory=new_id)
    description: Optional[str] = None
    status: MenuStatus = MenuStatus.DRAFT
    background_type: str = "none"
    background_value: Optional[str] = None
    font_family: str = "Inter"
    color_palette: str = "classic"
    navigation_theme: str = "modern"
    menu_logo: Optional[str] = None
    logo_size: str = "medium"
    section_counter: int = 0
    revision: int = 0
    published_slug: Optional[str] = None
    published_title: Optional[str] = None
    published_subtitle: Optional[str] = None
    published_at: Optional[float] = None
    created_at: float = 0.0
    updated_at: float = 0.0
    sections: list[MenuSection] = field(default_factory=list)

    def as_dict(self, include_sections: bool = True) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        if not include_sections:
            data.pop("sections")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MenuRecord":
        values = _known_fields(cls, data)
        values["status"] = MenuStatus(values.get("status", MenuStatus.DRAFT))
        values["sections"] = [
            MenuSection.from_dict(section) for section in values.get("sections") or []
        ]
        return cls(**values)


# Columns callers may set through `update_menu`; sections and bookkeeping
# fields have their own operations.
MENU_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "status",
        "background_type",
        "background_value",
        "font_family",
        "color_palette",
        "navigation_theme",
        "menu_logo",
        "logo_size",
        "section_counter",
        "published_slug",
        "published_title",
        "published_subtitle",
        "published_at",
    }
)

USER_UPDATABLE_FIELDS = frozenset(
    f.name
    for f in fields(UserRecord)
    if f.name not in {"id", "created_at", "updated_at", "last_active"}
)

# Fields that must never be cleared to None.
MENU_REQUIRED_FIELDS = frozenset(
    {
        "name",
        "status",
        "background_type",
        "font_family",
        "color_palette",
        "navigation_theme",
        "logo_size",
        "section_counter",
    }
)

USER_REQUIRED_FIELDS = frozenset(
    {"email", "name", "plan", "max_menus", "marketing_opt_in"}
)


def _known_fields(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}
