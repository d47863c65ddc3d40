"""HTTP controller layer for contract versions and attrition evaluation."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from inventory_backend.controllers.common import BulkIdsRequest, BulkResponse, to_bulk_response
from inventory_backend.controllers.dependencies import get_attrition_service, get_tenant_context
from inventory_backend.domain.errors import EntityNotFoundError, InventoryValidationError
from inventory_backend.domain.models import (
    ATTRITION_PERIOD_TYPES,
    PENALTY_CALCULATIONS,
    ContractVersion,
    TenantContext,
)
from inventory_backend.services.attrition_service import AttritionService
from inventory_backend.utils.config import get_settings
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/contract-versions", tags=["contracts"])


class ContractVersionRequest(BaseModel):
    contract_id: int = Field(gt=0)
    valid_from: date
    valid_to: date
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    attrition_applies: bool = False
    committed_quantity: int | None = Field(default=None, gt=0)
    minimum_pickup_percent: float | None = Field(default=None, ge=0.0, le=100.0)
    penalty_calculation: str | None = None
    grace_allowance: int = Field(default=0, ge=0)
    attrition_period_type: str | None = None
    unit_cost: float | None = Field(default=None, ge=0.0)
    fixed_fee: float | None = Field(default=None, ge=0.0)
    supplier_id: int | None = Field(default=None, gt=0)
    product_variant_id: int | None = Field(default=None, gt=0)

    @field_validator("penalty_calculation")
    @classmethod
    def validate_penalty_calculation(cls, value: str | None) -> str | None:
        if value is not None and value not in PENALTY_CALCULATIONS:
            raise ValueError(f"penalty_calculation must be one of {', '.join(PENALTY_CALCULATIONS)}")
        return value

    @field_validator("attrition_period_type")
    @classmethod
    def validate_attrition_period_type(cls, value: str | None) -> str | None:
        if value is not None and value not in ATTRITION_PERIOD_TYPES:
            raise ValueError(
                f"attrition_period_type must be one of {', '.join(ATTRITION_PERIOD_TYPES)}"
            )
        return value


class ContractVersionResponse(BaseModel):
    version_id: int
    contract_id: int
    valid_from: date
    valid_to: date
    currency: str
    attrition_applies: bool
    committed_quantity: int | None
    minimum_pickup_percent: float | None
    penalty_calculation: str | None
    grace_allowance: int
    attrition_period_type: str | None
    unit_cost: float | None
    fixed_fee: float | None
    supplier_id: int | None
    product_variant_id: int | None


class VersionStatusResponse(BaseModel):
    version_id: int
    status: str


class AttritionResponse(BaseModel):
    version_id: int
    penalty_calculation: str
    actual_pickup: int = Field(ge=0)
    pickup_percent: float = Field(ge=0.0)
    raw_shortfall: float = Field(ge=0.0)
    shortfall_units: float = Field(ge=0.0)
    shortfall_ratio: float = Field(ge=0.0)
    penalty_amount: float = Field(ge=0.0)


@router.post("", response_model=ContractVersionResponse, status_code=status.HTTP_201_CREATED)
async def save_contract_version(
    payload: ContractVersionRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: AttritionService = Depends(get_attrition_service),
) -> ContractVersionResponse:
    try:
        saved = service.save_version(
            context,
            ContractVersion(
                version_id=None,
                org_id=context.org_id,
                contract_id=payload.contract_id,
                valid_from=payload.valid_from,
                valid_to=payload.valid_to,
                currency=(payload.currency or settings.default_currency).upper(),
                attrition_applies=payload.attrition_applies,
                committed_quantity=payload.committed_quantity,
                minimum_pickup_percent=payload.minimum_pickup_percent,
                penalty_calculation=payload.penalty_calculation,
                grace_allowance=payload.grace_allowance,
                attrition_period_type=payload.attrition_period_type,
                unit_cost=payload.unit_cost,
                fixed_fee=payload.fixed_fee,
                supplier_id=payload.supplier_id,
                product_variant_id=payload.product_variant_id,
            ),
        )
        return ContractVersionResponse(
            version_id=saved.version_id,
            contract_id=saved.contract_id,
            valid_from=saved.valid_from,
            valid_to=saved.valid_to,
            currency=saved.currency,
            attrition_applies=saved.attrition_applies,
            committed_quantity=saved.committed_quantity,
            minimum_pickup_percent=saved.minimum_pickup_percent,
            penalty_calculation=saved.penalty_calculation,
            grace_allowance=saved.grace_allowance,
            attrition_period_type=saved.attrition_period_type,
            unit_cost=saved.unit_cost,
            fixed_fee=saved.fixed_fee,
            supplier_id=saved.supplier_id,
            product_variant_id=saved.product_variant_id,
        )
    except InventoryValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected contract version save failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save contract version",
        ) from exc


@router.post("/bulk/delete", response_model=BulkResponse)
async def bulk_delete(
    payload: BulkIdsRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: AttritionService = Depends(get_attrition_service),
) -> BulkResponse:
    try:
        return to_bulk_response(service.bulk_delete(context, payload.ids))
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected contract version bulk delete failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete contract versions",
        ) from exc


@router.get("/{version_id}/status", response_model=VersionStatusResponse)
async def version_status(
    version_id: int,
    context: TenantContext = Depends(get_tenant_context),
    service: AttritionService = Depends(get_attrition_service),
) -> VersionStatusResponse:
    try:
        return VersionStatusResponse(version_id=version_id, status=service.status(context, version_id))
    except EntityNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected contract version status failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute contract version status",
        ) from exc


@router.get("/{version_id}/attrition", response_model=AttritionResponse)
async def evaluate_attrition(
    version_id: int,
    actual_pickup: int | None = Query(default=None, ge=0),
    cost_per_unit: float | None = Query(default=None, ge=0.0),
    fixed_fee: float | None = Query(default=None, ge=0.0),
    context: TenantContext = Depends(get_tenant_context),
    service: AttritionService = Depends(get_attrition_service),
) -> AttritionResponse:
    """Pickup defaults to booked units of the version's buckets when not supplied."""
    try:
        result = service.evaluate(
            context,
            version_id,
            actual_pickup=actual_pickup,
            cost_per_unit=cost_per_unit,
            fixed_fee=fixed_fee,
        )
        return AttritionResponse(
            version_id=version_id,
            penalty_calculation=result.penalty_calculation,
            actual_pickup=result.actual_pickup,
            pickup_percent=result.pickup_percent,
            raw_shortfall=result.raw_shortfall,
            shortfall_units=result.shortfall_units,
            shortfall_ratio=result.shortfall_ratio,
            penalty_amount=result.penalty_amount,
        )
    except EntityNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InventoryValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected attrition evaluation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to evaluate attrition",
        ) from exc
