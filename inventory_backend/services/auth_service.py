"""Admin token login and bearer session validation."""

from __future__ import annotations

import secrets
from threading import RLock
from typing import Optional

from inventory_backend.utils.config import Settings, get_settings
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)

ANONYMOUS_ACTOR = "system"


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when a login token or bearer session is invalid."""


class AuthService:
    """Exchanges the admin token for bearer sessions, one per actor.

    Logging in again replaces the actor's previous session token.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: dict[str, str] = {}  # actor -> session token
        self._lock = RLock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str, actor: str = "admin") -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            logger.warning("Rejected login attempt | actor=%s", actor)
            raise InvalidAdminTokenError("Invalid admin token")
        session_token = secrets.token_urlsafe(32)
        with self._lock:
            replaced = actor in self._sessions
            self._sessions[actor] = session_token
        logger.info("Session opened | actor=%s | replaced=%s", actor, replaced)
        return session_token

    def resolve_actor(self, bearer_token: str | None) -> str:
        """Return the actor bound to `bearer_token`; anonymous when auth is off."""
        if not self.auth_enabled:
            return ANONYMOUS_ACTOR
        if not bearer_token:
            raise InvalidAdminTokenError("No active session. Login first.")
        with self._lock:
            for actor, session_token in self._sessions.items():
                if secrets.compare_digest(bearer_token, session_token):
                    return actor
        raise InvalidAdminTokenError("Invalid bearer token")
