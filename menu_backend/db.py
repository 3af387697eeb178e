"""
Record store abstraction for Postgres and a JSON-file implementation.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    case,
    create_engine,
    delete,
    func,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from menu_backend.errors import (
    Conflict,
    DuplicateKey,
    InvalidInput,
    MenuBackendError,
    NotFound,
    StorageUnavailable,
)
from menu_backend.records import (
    MENU_REQUIRED_FIELDS,
    MENU_UPDATABLE_FIELDS,
    USER_REQUIRED_FIELDS,
    USER_UPDATABLE_FIELDS,
    MenuRecord,
    MenuSection,
    MenuStatus,
    SessionRecord,
    UserRecord,
    UserSummary,
    normalize_email,
)

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """Operations every storage backend provides, with identical contracts."""

    def initialize(self) -> None:
        ...

    def create_user(self, user: UserRecord) -> UserRecord:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_external_id(self, external_id: str) -> Optional[UserRecord]:
        ...

    def update_user(self, user_id: str, **fields) -> UserRecord:
        ...

    def update_user_last_active(self, user_id: str) -> None:
        ...

    def create_menu(self, menu: MenuRecord) -> MenuRecord:
        ...

    def get_menu(self, menu_id: str) -> Optional[MenuRecord]:
        ...

    def get_user_menus(self, user_id: str) -> list[MenuRecord]:
        ...

    def get_published_menu(self, slug: str) -> Optional[MenuRecord]:
        ...

    def is_slug_taken(self, slug: str, exclude_menu_id: str | None = None) -> bool:
        ...

    def update_menu(self, menu_id: str, **fields) -> MenuRecord:
        ...

    def get_menu_sections(self, menu_id: str) -> list[MenuSection]:
        ...

    def save_menu_sections(
        self,
        menu_id: str,
        sections: Iterable[MenuSection],
        expected_revision: int | None = None,
    ) -> int:
        ...

    def delete_menu_sections(self, menu_id: str) -> None:
        ...

    def create_session(
        self, session_id: str, user_id: str, expires_at: float
    ) -> SessionRecord:
        ...

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        ...

    def delete_session(self, session_id: str) -> None:
        ...

    def get_all_users(self) -> list[UserSummary]:
        ...


def _check_not_null(fields: dict, required: frozenset, kind: str) -> None:
    cleared = sorted(key for key in required if key in fields and fields[key] is None)
    if cleared:
        raise InvalidInput(f"{kind} fields cannot be null: {', '.join(cleared)}")


def check_user_fields(fields: dict) -> None:
    unknown = set(fields) - USER_UPDATABLE_FIELDS
    if unknown:
        raise InvalidInput(f"Unknown user fields: {', '.join(sorted(unknown))}")
    _check_not_null(fields, USER_REQUIRED_FIELDS, "User")


def check_menu_fields(fields: dict) -> dict:
    unknown = set(fields) - MENU_UPDATABLE_FIELDS
    if unknown:
        raise InvalidInput(f"Unknown menu fields: {', '.join(sorted(unknown))}")
    _check_not_null(fields, MENU_REQUIRED_FIELDS, "Menu")
    cleaned = dict(fields)
    if "status" in cleaned:
        cleaned["status"] = MenuStatus(cleaned["status"])
    return cleaned


def check_section_ids(sections: list[MenuSection]) -> None:
    seen: set[int] = set()
    for section in sections:
        if section.id in seen:
            raise DuplicateKey(f"Section id {section.id} appears more than once")
        seen.add(section.id)


def engine_url(database_url: str) -> str:
    """Pick the psycopg driver for bare postgres URLs."""
    for prefix in ("postgres://", "postgresql://"):
        if database_url.startswith(prefix):
            return "postgresql+psycopg://" + database_url[len(prefix):]
    return database_url


def is_unique_violation(exc: IntegrityError) -> bool:
    """True for unique/primary-key violations, False for NOT NULL, FK and CHECK."""
    orig = exc.orig
    # 23505 is unique_violation.
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate == "23505"
    return "UNIQUE constraint failed" in str(orig)


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except MenuBackendError:
        raise
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise DuplicateKey(f"{action}: record already exists") from exc
        raise InvalidInput(f"{action}: record violates a constraint") from exc
    except SQLAlchemyError as exc:
        logger.error("%s failed: %s", action, exc)
        raise StorageUnavailable(f"{action}: database unavailable") from exc


class PostgresRecordStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(
        self, database_url: str, clock: Callable[[], float] = time.time
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresRecordStore")
        self.clock = clock
        url = engine_url(database_url)
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        if url.startswith("sqlite") and ":memory:" in url:
            # One shared connection, otherwise every thread sees an empty db.
            engine_kwargs.update(
                poolclass=StaticPool, connect_args={"check_same_thread": False}
            )
        else:
            engine_kwargs["pool_recycle"] = 1800
        with _storage_errors("connect"):
            self.engine = create_engine(url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self.initialize()

    def initialize(self) -> None:
        with _storage_errors("initialize"):
            Base.metadata.create_all(self.engine)

    # Users

    def create_user(self, user: UserRecord) -> UserRecord:
        now = self.clock()
        email = normalize_email(user.email)
        with _storage_errors("create_user"), self.Session() as session:
            if session.execute(
                select(UserRow.id).where(UserRow.email == email)
            ).first():
                raise DuplicateKey(f"User with email {email} already exists")
            if user.external_id and session.execute(
                select(UserRow.id).where(UserRow.external_id == user.external_id)
            ).first():
                raise DuplicateKey("External identity is already linked")
            values = user.as_dict()
            values.update(email=email, created_at=now, updated_at=now)
            row = UserRow(**values)
            session.add(row)
            session.commit()
            return _to_user(row)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with _storage_errors("get_user_by_email"), self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == normalize_email(email))
            ).scalar_one_or_none()
            return _to_user(row) if row else None

    def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        with _storage_errors("get_user_by_id"), self.Session() as session:
            row = session.get(UserRow, user_id)
            return _to_user(row) if row else None

    def get_user_by_external_id(self, external_id: str) -> Optional[UserRecord]:
        with _storage_errors("get_user_by_external_id"), self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.external_id == external_id)
            ).scalar_one_or_none()
            return _to_user(row) if row else None

    def update_user(self, user_id: str, **fields) -> UserRecord:
        check_user_fields(fields)
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        with _storage_errors("update_user"), self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                raise NotFound(f"User {user_id} not found")
            for key, value in fields.items():
                setattr(row, key, value)
            row.updated_at = self.clock()
            session.commit()
            return _to_user(row)

    def update_user_last_active(self, user_id: str) -> None:
        with _storage_errors("update_user_last_active"), self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                raise NotFound(f"User {user_id} not found")
            now = self.clock()
            row.last_active = now
            row.updated_at = now
            session.commit()

    def get_all_users(self) -> list[UserSummary]:
        with _storage_errors("get_all_users"), self.Session() as session:
            counts = {
                user_id: (menu_count, published_count)
                for user_id, menu_count, published_count in session.execute(
                    select(
                        MenuRow.user_id,
                        func.count(MenuRow.id),
                        func.count(
                            case((MenuRow.status == MenuStatus.PUBLISHED.value, 1))
                        ),
                    )
                    .where(MenuRow.status != MenuStatus.DELETED.value)
                    .group_by(MenuRow.user_id)
                )
            }
            rows = session.execute(
                select(UserRow).order_by(UserRow.created_at.desc())
            ).scalars()
            summaries = []
            for row in rows:
                menu_count, published_count = counts.get(row.id, (0, 0))
                summaries.append(
                    UserSummary(
                        user=_to_user(row),
                        menu_count=menu_count,
                        published_count=published_count,
                    )
                )
            return summaries

    # Menus

    def create_menu(self, menu: MenuRecord) -> MenuRecord:
        now = self.clock()
        with _storage_errors("create_menu"), self.Session() as session:
            if not session.get(UserRow, menu.user_id):
                raise NotFound(f"User {menu.user_id} not found")
            values = menu.as_dict(include_sections=False)
            values.update(
                status=MenuStatus.DRAFT.value,
                revision=0,
                created_at=now,
                updated_at=now,
            )
            row = MenuRow(**values)
            session.add(row)
            session.commit()
            return _to_menu(row, [])

    def get_menu(self, menu_id: str) -> Optional[MenuRecord]:
        with _storage_errors("get_menu"), self.Session() as session:
            row = session.get(MenuRow, menu_id)
            if not row:
                return None
            return _to_menu(row, self._section_rows(session, menu_id))

    def get_user_menus(self, user_id: str) -> list[MenuRecord]:
        with _storage_errors("get_user_menus"), self.Session() as session:
            rows = (
                session.execute(
                    select(MenuRow)
                    .where(
                        MenuRow.user_id == user_id,
                        MenuRow.status != MenuStatus.DELETED.value,
                    )
                    .order_by(MenuRow.updated_at.desc())
                )
                .scalars()
                .all()
            )
            if not rows:
                return []
            by_menu: dict[str, list[MenuSectionRow]] = defaultdict(list)
            section_rows = session.execute(
                select(MenuSectionRow)
                .where(MenuSectionRow.menu_id.in_([row.id for row in rows]))
                .order_by(MenuSectionRow.menu_id, MenuSectionRow.section_id)
            ).scalars()
            for section_row in section_rows:
                by_menu[section_row.menu_id].append(section_row)
            return [_to_menu(row, by_menu[row.id]) for row in rows]

    def get_published_menu(self, slug: str) -> Optional[MenuRecord]:
        with _storage_errors("get_published_menu"), self.Session() as session:
            row = session.execute(
                select(MenuRow).where(
                    MenuRow.published_slug == slug,
                    MenuRow.status == MenuStatus.PUBLISHED.value,
                )
            ).scalar_one_or_none()
            if not row:
                return None
            return _to_menu(row, self._section_rows(session, row.id))

    def is_slug_taken(self, slug: str, exclude_menu_id: str | None = None) -> bool:
        with _storage_errors("is_slug_taken"), self.Session() as session:
            return self._slug_holder(session, slug, exclude_menu_id) is not None

    def update_menu(self, menu_id: str, **fields) -> MenuRecord:
        fields = check_menu_fields(fields)
        with _storage_errors("update_menu"), self.Session() as session:
            row = session.get(MenuRow, menu_id)
            if not row:
                raise NotFound(f"Menu {menu_id} not found")
            status = fields.get("status", MenuStatus(row.status))
            slug = fields.get("published_slug", row.published_slug)
            if status == MenuStatus.PUBLISHED and slug:
                if self._slug_holder(session, slug, menu_id):
                    raise DuplicateKey(
                        f"Slug {slug} is held by another published menu"
                    )
            for key, value in fields.items():
                setattr(row, key, value.value if key == "status" else value)
            row.updated_at = self.clock()
            session.commit()
            return _to_menu(row, self._section_rows(session, menu_id))

    # Sections

    def get_menu_sections(self, menu_id: str) -> list[MenuSection]:
        with _storage_errors("get_menu_sections"), self.Session() as session:
            return [_to_section(row) for row in self._section_rows(session, menu_id)]

    def save_menu_sections(
        self,
        menu_id: str,
        sections: Iterable[MenuSection],
        expected_revision: int | None = None,
    ) -> int:
        sections = list(sections)
        check_section_ids(sections)
        with _storage_errors("save_menu_sections"), self.Session() as session:
            menu = session.get(MenuRow, menu_id, with_for_update=True)
            if not menu:
                raise NotFound(f"Menu {menu_id} not found")
            if expected_revision is not None and menu.revision != expected_revision:
                raise Conflict(
                    f"Menu {menu_id} is at revision {menu.revision}, "
                    f"not {expected_revision}"
                )
            session.execute(
                delete(MenuSectionRow).where(MenuSectionRow.menu_id == menu_id)
            )
            session.add_all(
                MenuSectionRow(
                    menu_id=menu_id,
                    section_id=section.id,
                    name=section.name,
                    type=section.type,
                    columns=list(section.columns),
                    title_columns=list(section.title_columns),
                    items=[dict(item) for item in section.items],
                )
                for section in sections
            )
            menu.revision += 1
            menu.updated_at = self.clock()
            session.commit()
            return menu.revision

    def delete_menu_sections(self, menu_id: str) -> None:
        with _storage_errors("delete_menu_sections"), self.Session() as session:
            session.execute(
                delete(MenuSectionRow).where(MenuSectionRow.menu_id == menu_id)
            )
            session.commit()

    # Sessions

    def create_session(
        self, session_id: str, user_id: str, expires_at: float
    ) -> SessionRecord:
        with _storage_errors("create_session"), self.Session() as session:
            row = SessionRow(
                id=session_id,
                user_id=user_id,
                expires_at=expires_at,
                created_at=self.clock(),
            )
            session.add(row)
            session.commit()
            return _to_session(row)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with _storage_errors("get_session"), self.Session() as session:
            row = session.get(SessionRow, session_id)
            if not row:
                return None
            record = _to_session(row)
            if record.is_expired(self.clock()):
                session.delete(row)
                session.commit()
                return None
            return record

    def delete_session(self, session_id: str) -> None:
        with _storage_errors("delete_session"), self.Session() as session:
            session.execute(delete(SessionRow).where(SessionRow.id == session_id))
            session.commit()

    def _section_rows(self, session: Session, menu_id: str) -> list["MenuSectionRow"]:
        return list(
            session.execute(
                select(MenuSectionRow)
                .where(MenuSectionRow.menu_id == menu_id)
                .order_by(MenuSectionRow.section_id)
            ).scalars()
        )

    def _slug_holder(
        self, session: Session, slug: str, exclude_menu_id: str | None
    ) -> Optional[str]:
        stmt = select(MenuRow.id).where(
            MenuRow.published_slug == slug,
            MenuRow.status == MenuStatus.PUBLISHED.value,
        )
        if exclude_menu_id:
            stmt = stmt.where(MenuRow.id != exclude_menu_id)
        return session.execute(stmt.limit(1)).scalar_one_or_none()


def _to_user(row: "UserRow") -> UserRecord:
    return UserRecord(
        **{column.name: getattr(row, column.name) for column in UserRow.__table__.columns}
    )


def _to_section(row: "MenuSectionRow") -> MenuSection:
    return MenuSection(
        id=row.section_id,
        name=row.name,
        type=row.type,
        columns=list(row.columns or []),
        title_columns=list(row.title_columns or []),
        items=[dict(item) for item in row.items or []],
    )


def _to_menu(row: "MenuRow", section_rows: list["MenuSectionRow"]) -> MenuRecord:
    values = {
        column.name: getattr(row, column.name) for column in MenuRow.__table__.columns
    }
    values["status"] = MenuStatus(values["status"])
    values["sections"] = [_to_section(section_row) for section_row in section_rows]
    return MenuRecord(**values)


def _to_session(row: "SessionRow") -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    password_hash = Column(String, nullable=True)
    external_id = Column(String, nullable=True, unique=True)
    plan = Column(String, nullable=False, default="free")
    max_menus = Column(Integer, nullable=False, default=5)
    restaurant = Column(String, nullable=True)
    avatar = Column(Text, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    business_name = Column(String, nullable=True)
    business_type = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip_code = Column(String, nullable=True)
    marketing_opt_in = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
    last_active = Column(Float, nullable=True)


class MenuRow(Base):
    __tablename__ = "menus"
    __table_args__ = (
        Index(
            "uq_menus_published_slug",
            "published_slug",
            unique=True,
            postgresql_where=text("status = 'published'"),
            sqlite_where=text("status = 'published'"),
        ),
    )

    id = Column(String, primary_key=True)
    user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=MenuStatus.DRAFT.value, index=True)
    background_type = Column(String, nullable=False, default="none")
    background_value = Column(Text, nullable=True)
    font_family = Column(String, nullable=False, default="Inter")
    color_palette = Column(String, nullable=False, default="classic")
    navigation_theme = Column(String, nullable=False, default="modern")
    menu_logo = Column(Text, nullable=True)
    logo_size = Column(String, nullable=False, default="medium")
    section_counter = Column(Integer, nullable=False, default=0)
    revision = Column(Integer, nullable=False, default=0)
    published_slug = Column(String, nullable=True)
    published_title = Column(String, nullable=True)
    published_subtitle = Column(String, nullable=True)
    published_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class MenuSectionRow(Base):
    __tablename__ = "menu_sections"
    __table_args__ = (UniqueConstraint("menu_id", "section_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    menu_id = Column(
        String, ForeignKey("menus.id", ondelete="CASCADE"), nullable=False, index=True
    )
    section_id = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    columns = Column(JSON, nullable=False, default=list)
    title_columns = Column(JSON, nullable=False, default=list)
    items = Column(JSON, nullable=False, default=list)


class SessionRow(Base):
    __tablename__ = "user_sessions"

    id = Column(String, primary_key=True)
    user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at = Column(Float, nullable=False, index=True)
    created_at = Column(Float, nullable=False)
