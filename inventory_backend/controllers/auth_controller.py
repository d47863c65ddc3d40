"""Controller layer for admin session login."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from inventory_backend.controllers.dependencies import get_auth_service
from inventory_backend.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)
    actor: str = Field(default="admin", min_length=1, max_length=120)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        bearer = auth_service.login(payload.admin_token, actor=payload.actor)
        return LoginResponse(access_token=bearer)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected login failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to login",
        ) from exc
