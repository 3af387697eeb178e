"""
Session tokens on top of the record store.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional

from menu_backend.db import RecordStore
from menu_backend.errors import Unauthenticated
from menu_backend.records import SessionRecord, UserRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 7 * 24 * 3600


class SessionDirectory:
    """Issues, resolves and revokes opaque bearer tokens.

    Every issuance path (registration, password login, federated login) uses
    the same expiry horizon. Expired sessions are removed by the store the
    next time they are looked up.
    """

    def __init__(
        self,
        store: RecordStore,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def issue(self, user_id: str) -> SessionRecord:
        token = secrets.token_urlsafe(32)
        return self.store.create_session(
            token, user_id, self.clock() + self.ttl_seconds
        )

    def resolve(self, token: Optional[str]) -> UserRecord:
        if not token:
            raise Unauthenticated("No session found")
        session = self.store.get_session(token)
        if session is None:
            raise Unauthenticated("Invalid or expired session")
        user = self.store.get_user_by_id(session.user_id)
        if user is None:
            logger.warning("Session points at missing user %s", session.user_id)
            raise Unauthenticated("User not found")
        return user

    def revoke(self, token: Optional[str]) -> None:
        if token:
            self.store.delete_session(token)
