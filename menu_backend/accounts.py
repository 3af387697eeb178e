"""
Registration, login and account administration.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import bcrypt

from menu_backend.db import RecordStore
from menu_backend.errors import Forbidden, InvalidInput, Unauthenticated
from menu_backend.records import (
    SessionRecord,
    UserRecord,
    UserSummary,
    normalize_email,
)
from menu_backend.sessions import SessionDirectory

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
DEFAULT_RESTAURANT = "My Restaurant"

PROFILE_FIELDS = frozenset(
    {
        "name",
        "restaurant",
        "avatar",
        "first_name",
        "last_name",
        "phone",
        "business_name",
        "business_type",
        "address",
        "city",
        "state",
        "zip_code",
        "marketing_opt_in",
    }
)


def hash_password(password: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


@dataclass(frozen=True)
class ExternalIdentity:
    """Claims of an identity provider token that was already verified."""

    subject: str
    email: str
    name: str
    picture: Optional[str] = None


@dataclass
class AdminOverview:
    users: list[UserSummary]
    total_users: int
    total_menus: int
    published_menus: int
    active_today: int


class AccountService:
    def __init__(
        self,
        store: RecordStore,
        sessions: SessionDirectory,
        *,
        admin_username: str = "admin",
        admin_password: Optional[str] = None,
        bcrypt_rounds: int = 12,
    ):
        self.store = store
        self.sessions = sessions
        self.admin_username = admin_username
        self.admin_password = admin_password
        self.bcrypt_rounds = bcrypt_rounds

    def register(
        self, email: str, password: str, name: str, **profile
    ) -> tuple[UserRecord, SessionRecord]:
        """Create a password account and log it in."""
        email = normalize_email(email)
        name = (name or "").strip()
        if not email or not password or not name:
            raise InvalidInput("Email, password, and name are required")
        if "@" not in email:
            raise InvalidInput("Email address is not valid")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidInput(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        self._check_profile_fields(profile)
        user = self.store.create_user(
            UserRecord(
                email=email,
                name=name,
                password_hash=hash_password(password, self.bcrypt_rounds),
                **profile,
            )
        )
        logger.info("Registered user %s", user.id)
        return user, self.sessions.issue(user.id)

    def login(self, email: str, password: str) -> tuple[UserRecord, SessionRecord]:
        if not email or not password:
            raise InvalidInput("Email and password are required")
        user = self.store.get_user_by_email(normalize_email(email))
        if (
            user is None
            or not user.password_hash
            or not verify_password(password, user.password_hash)
        ):
            raise Unauthenticated("Invalid credentials")
        session = self.sessions.issue(user.id)
        self.store.update_user_last_active(user.id)
        return user, session

    def login_external(
        self, identity: ExternalIdentity
    ) -> tuple[UserRecord, SessionRecord, bool]:
        """Sign in with verified identity-provider claims.

        Looks the user up by subject, then by email (linking the subject to
        an existing password account), and creates an account otherwise.
        Returns the user, a new session and whether the account is new.
        """
        if not identity.subject or not identity.email:
            raise InvalidInput("Identity subject and email are required")
        is_new_user = False
        user = self.store.get_user_by_external_id(identity.subject)
        if user is None:
            user = self.store.get_user_by_email(normalize_email(identity.email))
            if user is not None and not user.external_id:
                user = self.store.update_user(user.id, external_id=identity.subject)
        if user is None:
            is_new_user = True
            user = self.store.create_user(
                UserRecord(
                    email=normalize_email(identity.email),
                    name=identity.name or identity.email,
                    external_id=identity.subject,
                    avatar=identity.picture,
                    restaurant=DEFAULT_RESTAURANT,
                )
            )
            logger.info("Created user %s from external identity", user.id)
        session = self.sessions.issue(user.id)
        self.store.update_user_last_active(user.id)
        return user, session, is_new_user

    def logout(self, token: Optional[str]) -> None:
        self.sessions.revoke(token)

    def current_user(self, token: Optional[str]) -> UserRecord:
        return self.sessions.resolve(token)

    def update_profile(self, user_id: str, **fields) -> UserRecord:
        self._check_profile_fields(fields)
        if "name" in fields and not (fields["name"] or "").strip():
            raise InvalidInput("Name cannot be empty")
        return self.store.update_user(user_id, **fields)

    def admin_overview(self, username: str, password: str) -> AdminOverview:
        if not self.admin_password:
            raise Forbidden("Admin access is not configured")
        if not (
            secrets.compare_digest(
                (username or "").encode("utf-8"), self.admin_username.encode("utf-8")
            )
            and secrets.compare_digest(
                (password or "").encode("utf-8"), self.admin_password.encode("utf-8")
            )
        ):
            raise Unauthenticated("Invalid admin credentials")
        users = self.store.get_all_users()
        today = datetime.now(timezone.utc).date()
        return AdminOverview(
            users=users,
            total_users=len(users),
            total_menus=sum(s.menu_count for s in users),
            published_menus=sum(s.published_count for s in users),
            active_today=sum(
                1
                for s in users
                if s.user.last_active
                and datetime.fromtimestamp(s.user.last_active, timezone.utc).date()
                == today
            ),
        )

    @staticmethod
    def _check_profile_fields(fields: dict) -> None:
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            raise InvalidInput(f"Unknown profile fields: {', '.join(sorted(unknown))}")
