"""
Pydantic schemas for the menu backend API. The browser editor speaks camelCase.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StatusResponse(ApiModel):
    status: Literal["OK"] = "OK"
    timestamp: float
    message: str
    version: str


class MessageResponse(ApiModel):
    success: bool = True
    message: str


# Accounts


class RegisterRequest(ApiModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=256)
    name: str = Field(..., max_length=255)
    restaurant: Optional[str] = Field(None, max_length=255)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    business_name: Optional[str] = None
    business_type: Optional[str] = None
    marketing_opt_in: Optional[bool] = None


class LoginRequest(ApiModel):
    email: str
    password: str


class ProfileUpdateRequest(ApiModel):
    name: Optional[str] = Field(None, max_length=255)
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
    marketing_opt_in: Optional[bool] = None


class UserResponse(ApiModel):
    id: str
    email: str
    name: str
    restaurant: Optional[str] = None
    avatar: Optional[str] = None
    plan: str
    max_menus: int
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
    created_at: float
    updated_at: float
    last_active: Optional[float] = None


class AuthResponse(ApiModel):
    success: bool = True
    user: UserResponse
    session_id: Optional[str] = None
    message: Optional[str] = None


# Menus


class SectionPayload(ApiModel):
    id: int
    name: str
    type: str
    columns: list[str] = Field(default_factory=list)
    title_columns: Optional[list[str]] = None
    items: list[dict[str, Any]] = Field(default_factory=list)


class SectionResponse(ApiModel):
    id: int
    name: str
    type: str
    columns: list[str]
    title_columns: list[str]
    items: list[dict[str, Any]]


class MenuCreateRequest(ApiModel):
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    sections: list[SectionPayload] = Field(default_factory=list)
    background_type: Optional[str] = None
    background_value: Optional[str] = None
    font_family: Optional[str] = None
    color_palette: Optional[str] = None
    navigation_theme: Optional[str] = None
    menu_logo: Optional[str] = None
    logo_size: Optional[str] = None


class MenuUpdateRequest(ApiModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    background_type: Optional[str] = None
    background_value: Optional[str] = None
    font_family: Optional[str] = None
    color_palette: Optional[str] = None
    navigation_theme: Optional[str] = None
    menu_logo: Optional[str] = None
    logo_size: Optional[str] = None
    section_counter: Optional[int] = None
    sections: Optional[list[SectionPayload]] = None
    revision: Optional[int] = None


class SectionsRequest(ApiModel):
    sections: list[SectionPayload]
    revision: Optional[int] = None


class SectionsResponse(ApiModel):
    success: bool = True
    revision: int


class MenuResponse(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    status: str
    background_type: str
    background_value: Optional[str] = None
    font_family: str
    color_palette: str
    navigation_theme: str
    menu_logo: Optional[str] = None
    logo_size: str
    section_counter: int
    revision: int
    published_slug: Optional[str] = None
    published_title: Optional[str] = None
    published_subtitle: Optional[str] = None
    published_at: Optional[float] = None
    created_at: float
    updated_at: float
    sections: list[SectionResponse]


class MenuEnvelope(ApiModel):
    success: bool = True
    menu: MenuResponse


class MenuListResponse(ApiModel):
    success: bool = True
    menus: list[MenuResponse]


class PublishedMenuResponse(ApiModel):
    slug: str
    title: Optional[str] = None
    subtitle: Optional[str] = None
    published_at: Optional[float] = None
    background_type: str
    background_value: Optional[str] = None
    font_family: str
    color_palette: str
    navigation_theme: str
    menu_logo: Optional[str] = None
    logo_size: str
    sections: list[SectionResponse]


class PublishRequest(ApiModel):
    slug: str
    title: str = Field(..., max_length=255)
    subtitle: Optional[str] = Field(None, max_length=255)


class PublishResponse(ApiModel):
    success: bool = True
    published_url: str
    slug: str
    title: str
    subtitle: Optional[str] = None
    message: str = "Menu published successfully"


class SlugCheckRequest(ApiModel):
    slug: str
    menu_id: Optional[str] = None


class SlugCheckResponse(ApiModel):
    available: bool
    slug: str
    message: str


# Uploads


class UploadRequest(ApiModel):
    file_data: str
    file_name: str = Field(..., max_length=255)
    menu_id: Optional[str] = None


class UploadResponse(ApiModel):
    success: bool = True
    url: str
    filename: str
    size: int


# Admin


class AdminRequest(ApiModel):
    username: str
    password: str


class AdminUser(ApiModel):
    id: str
    name: str
    email: str
    restaurant: Optional[str] = None
    avatar: Optional[str] = None
    plan: str
    max_menus: int
    menu_count: int
    published_count: int
    created_at: float
    updated_at: float
    last_active: Optional[float] = None


class AdminStats(ApiModel):
    total_users: int
    total_menus: int
    published_menus: int
    active_today: int


class AdminResponse(ApiModel):
    success: bool = True
    users: list[AdminUser]
    stats: AdminStats
