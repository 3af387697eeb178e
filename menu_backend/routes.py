"""
HTTP routes for the menu backend API.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Response

from menu_backend.dependencies import (
    Services,
    get_current_user,
    get_services,
    get_session_token,
)
from menu_backend.records import MenuRecord, UserRecord
from menu_backend.schemas import (
    AdminRequest,
    AdminResponse,
    AdminStats,
    AdminUser,
    AuthResponse,
    LoginRequest,
    MenuCreateRequest,
    MenuEnvelope,
    MenuListResponse,
    MenuResponse,
    MenuUpdateRequest,
    MessageResponse,
    ProfileUpdateRequest,
    PublishedMenuResponse,
    PublishRequest,
    PublishResponse,
    RegisterRequest,
    SectionsRequest,
    SectionsResponse,
    SlugCheckRequest,
    SlugCheckResponse,
    StatusResponse,
    UploadRequest,
    UploadResponse,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_response(user: UserRecord) -> UserResponse:
    return UserResponse(**user.as_public_dict())


def _menu_response(menu: MenuRecord) -> MenuResponse:
    return MenuResponse(**menu.as_dict())


def _set_session_cookie(response: Response, services: Services, token: str) -> None:
    settings = services.settings
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=int(settings.session_ttl_seconds),
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
    )


@router.get("/status", response_model=StatusResponse)
def api_status():
    return StatusResponse(
        timestamp=time.time(),
        message="Menu Editor API is working",
        version="2.0",
    )


# Accounts


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    payload: RegisterRequest,
    response: Response,
    services: Services = Depends(get_services),
):
    profile = payload.model_dump(
        exclude={"email", "password", "name"}, exclude_none=True
    )
    user, session = services.accounts.register(
        payload.email, payload.password, payload.name, **profile
    )
    _set_session_cookie(response, services, session.id)
    return AuthResponse(
        user=_user_response(user),
        session_id=session.id,
        message="User created successfully",
    )


@router.post("/auth/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    response: Response,
    services: Services = Depends(get_services),
):
    user, session = services.accounts.login(payload.email, payload.password)
    _set_session_cookie(response, services, session.id)
    return AuthResponse(user=_user_response(user), session_id=session.id)


@router.api_route("/auth/verify", methods=["GET", "POST"], response_model=AuthResponse)
def verify_session(user: UserRecord = Depends(get_current_user)):
    return AuthResponse(user=_user_response(user))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    response: Response,
    token: Optional[str] = Depends(get_session_token),
    services: Services = Depends(get_services),
):
    services.accounts.logout(token)
    response.delete_cookie(services.settings.session_cookie_name, path="/")
    return MessageResponse(message="Logged out")


@router.patch("/auth/profile", response_model=AuthResponse)
def update_profile(
    payload: ProfileUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    updated = services.accounts.update_profile(
        user.id, **payload.model_dump(exclude_unset=True)
    )
    return AuthResponse(user=_user_response(updated))


# Menus


@router.get("/menus", response_model=MenuListResponse)
def list_menus(
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    menus = services.menus.list_for_user(user.id)
    return MenuListResponse(menus=[_menu_response(menu) for menu in menus])


@router.post("/menus", response_model=MenuEnvelope, status_code=201)
def create_menu(
    payload: MenuCreateRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    styling = payload.model_dump(
        exclude={"name", "description", "sections"}, exclude_none=True
    )
    menu = services.menus.create(
        user.id,
        payload.name,
        description=payload.description,
        sections=[section.model_dump() for section in payload.sections],
        **styling,
    )
    return MenuEnvelope(menu=_menu_response(menu))


@router.post("/menus/check-availability", response_model=SlugCheckResponse)
def check_slug_availability(
    payload: SlugCheckRequest, services: Services = Depends(get_services)
):
    available = services.menus.check_slug_availability(payload.slug, payload.menu_id)
    return SlugCheckResponse(
        available=available,
        slug=payload.slug,
        message="Slug is available" if available else "Slug is already taken",
    )


@router.get("/menus/published/{slug}", response_model=PublishedMenuResponse)
def get_published_menu(slug: str, services: Services = Depends(get_services)):
    menu = services.menus.get_published(slug)
    return PublishedMenuResponse(
        slug=menu.published_slug,
        title=menu.published_title,
        subtitle=menu.published_subtitle,
        published_at=menu.published_at,
        background_type=menu.background_type,
        background_value=menu.background_value,
        font_family=menu.font_family,
        color_palette=menu.color_palette,
        navigation_theme=menu.navigation_theme,
        menu_logo=menu.menu_logo,
        logo_size=menu.logo_size,
        sections=[section.as_dict() for section in menu.sections],
    )


@router.get("/menus/{menu_id}", response_model=MenuEnvelope)
def get_menu(
    menu_id: str,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    menu = services.menus.assert_ownership(menu_id, user.id)
    return MenuEnvelope(menu=_menu_response(menu))


@router.patch("/menus/{menu_id}", response_model=MenuEnvelope)
def update_menu(
    menu_id: str,
    payload: MenuUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    fields = payload.model_dump(exclude_unset=True, exclude={"sections", "revision"})
    sections = (
        [section.model_dump() for section in payload.sections]
        if payload.sections is not None
        else None
    )
    menu = services.menus.update(
        menu_id, user.id, fields, sections=sections, expected_revision=payload.revision
    )
    return MenuEnvelope(menu=_menu_response(menu))


@router.put("/menus/{menu_id}/sections", response_model=SectionsResponse)
def save_sections(
    menu_id: str,
    payload: SectionsRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    revision = services.menus.save_sections(
        menu_id,
        user.id,
        [section.model_dump() for section in payload.sections],
        expected_revision=payload.revision,
    )
    return SectionsResponse(revision=revision)


@router.post("/menus/{menu_id}/publish", response_model=PublishResponse)
def publish_menu(
    menu_id: str,
    payload: PublishRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    published = services.menus.publish(
        menu_id, user.id, payload.slug, payload.title, payload.subtitle
    )
    return PublishResponse(
        published_url=published.url,
        slug=published.slug,
        title=published.title,
        subtitle=published.subtitle,
    )


@router.delete("/menus/{menu_id}", response_model=MessageResponse)
def delete_menu(
    menu_id: str,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    services.menus.delete(menu_id, user.id)
    return MessageResponse(message="Menu deleted successfully")


# Uploads


@router.post("/uploads/logo", response_model=UploadResponse)
def upload_logo(
    payload: UploadRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    upload = services.uploads.upload_logo(
        user.id, payload.file_data, payload.file_name, payload.menu_id
    )
    return UploadResponse(url=upload.url, filename=upload.file_name, size=upload.size)


@router.post("/uploads/background", response_model=UploadResponse)
def upload_background(
    payload: UploadRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    upload = services.uploads.upload_background(
        user.id, payload.file_data, payload.file_name, payload.menu_id
    )
    return UploadResponse(url=upload.url, filename=upload.file_name, size=upload.size)


# Admin


@router.post("/admin/users", response_model=AdminResponse)
def admin_users(payload: AdminRequest, services: Services = Depends(get_services)):
    overview = services.accounts.admin_overview(payload.username, payload.password)
    users = [
        AdminUser(
            **summary.user.as_public_dict(),
            menu_count=summary.menu_count,
            published_count=summary.published_count,
        )
        for summary in overview.users
    ]
    return AdminResponse(
        users=users,
        stats=AdminStats(
            total_users=overview.total_users,
            total_menus=overview.total_menus,
            published_menus=overview.published_menus,
            active_today=overview.active_today,
        ),
    )
