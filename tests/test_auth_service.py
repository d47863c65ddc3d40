from __future__ import annotations

from dataclasses import replace

import pytest

from inventory_backend.services.auth_service import (
    ANONYMOUS_ACTOR,
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from inventory_backend.utils.config import get_settings


def _service(admin_token: str | None) -> AuthService:
    return AuthService(settings=replace(get_settings(), admin_token=admin_token))


def test_login_again_replaces_previous_session() -> None:
    service = _service("secret-admin-token")

    first = service.login("secret-admin-token", actor="revenue-desk")
    second = service.login("secret-admin-token", actor="revenue-desk")

    assert first != second
    assert service.resolve_actor(second) == "revenue-desk"
    with pytest.raises(InvalidAdminTokenError):
        service.resolve_actor(first)


def test_sessions_are_kept_per_actor() -> None:
    service = _service("secret-admin-token")

    desk = service.login("secret-admin-token", actor="revenue-desk")
    contracting = service.login("secret-admin-token", actor="contracting")

    assert service.resolve_actor(desk) == "revenue-desk"
    assert service.resolve_actor(contracting) == "contracting"


def test_wrong_token_and_missing_bearer_are_rejected() -> None:
    service = _service("secret-admin-token")

    with pytest.raises(InvalidAdminTokenError):
        service.login("wrong")
    with pytest.raises(InvalidAdminTokenError):
        service.resolve_actor(None)


def test_auth_disabled_without_admin_token() -> None:
    service = _service(None)

    assert service.resolve_actor(None) == ANONYMOUS_ACTOR
    with pytest.raises(AdminTokenNotConfiguredError):
        service.login("anything")
