"""
Error types shared by the record stores, the session directory and the menu
repository. The HTTP layer maps each one to a response via `status_code`.
"""

from __future__ import annotations


class MenuBackendError(Exception):
    """Base class for every error this package raises on purpose."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(MenuBackendError):
    status_code = 404


class DuplicateKey(MenuBackendError):
    status_code = 409


class Conflict(MenuBackendError):
    """A write was based on a stale revision of the record."""

    status_code = 409


class Forbidden(MenuBackendError):
    status_code = 403


class Unauthenticated(MenuBackendError):
    status_code = 401


class InvalidInput(MenuBackendError):
    status_code = 400


class SlugUnavailable(InvalidInput):
    """Another published menu already holds the requested slug."""


class StorageUnavailable(MenuBackendError):
    """The backing database or data directory could not be used."""

    status_code = 503
