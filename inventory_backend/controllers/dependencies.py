"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from inventory_backend.domain.models import TenantContext
from inventory_backend.services.attrition_service import AttritionService
from inventory_backend.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from inventory_backend.services.generation_service import AllocationGenerationService
from inventory_backend.services.pool_service import PoolService
from inventory_backend.services.utilization_service import UtilizationService
from inventory_backend.services.weighting_service import PoolAllocationService
from inventory_backend.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)


def _state_service(request: Request, attribute: str, label: str):
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=getattr(request.app.state, "settings", None) or get_settings())
        request.app.state.auth_service = service
    return service


def get_pool_service(request: Request) -> PoolService:
    return _state_service(request, "pool_service", "Pool")


def get_allocation_service(request: Request) -> PoolAllocationService:
    return _state_service(request, "allocation_service", "Allocation")


def get_generation_service(request: Request) -> AllocationGenerationService:
    return _state_service(request, "generation_service", "Generation")


def get_utilization_service(request: Request) -> UtilizationService:
    return _state_service(request, "utilization_service", "Utilization")


def get_attrition_service(request: Request) -> AttritionService:
    return _state_service(request, "attrition_service", "Attrition")


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> str:
    """Validate the bearer session and return the actor bound to it."""
    if not auth_service.auth_enabled:
        return auth_service.resolve_actor(None)
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        return auth_service.resolve_actor(credentials.credentials)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


async def get_tenant_context(
    request: Request,
    actor: str = Depends(require_admin),
    organization_id: int | None = Header(default=None, alias="X-Organization-Id"),
) -> TenantContext:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    org_id = organization_id if organization_id is not None else settings.default_organization_id
    if org_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-Id must be a positive integer",
        )
    return TenantContext(org_id=org_id, actor=actor)
