"""HTTP controller layer for rate plans and bucket generation."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from inventory_backend.controllers.common import BucketResponse, to_bucket_response
from inventory_backend.controllers.dependencies import get_generation_service, get_tenant_context
from inventory_backend.domain.errors import EntityNotFoundError, InventoryValidationError
from inventory_backend.domain.models import (
    ALLOCATION_TYPES,
    BUCKET_MODES,
    DAYS_OF_WEEK,
    RatePlan,
    TenantContext,
)
from inventory_backend.services.generation_service import AllocationGenerationService
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/rate-plans", tags=["rate-plans"])


class CreateRatePlanRequest(BaseModel):
    product_variant_id: int = Field(gt=0)
    supplier_id: int = Field(gt=0)
    valid_from: date
    valid_to: date
    inventory_model: str
    bucket_mode: str = "daily"
    days_of_week: list[str] | None = None
    pool_id: int | None = Field(default=None, gt=0)
    name: str | None = Field(default=None, max_length=200)

    @field_validator("inventory_model")
    @classmethod
    def validate_inventory_model(cls, value: str) -> str:
        if value not in ALLOCATION_TYPES:
            raise ValueError(f"inventory_model must be one of {', '.join(ALLOCATION_TYPES)}")
        return value

    @field_validator("bucket_mode")
    @classmethod
    def validate_bucket_mode(cls, value: str) -> str:
        if value not in BUCKET_MODES:
            raise ValueError(f"bucket_mode must be one of {', '.join(BUCKET_MODES)}")
        return value

    @field_validator("days_of_week")
    @classmethod
    def validate_days_of_week(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        if not value:
            raise ValueError("days_of_week must contain at least one day when provided")
        normalized = [item.strip().lower() for item in value]
        for day in normalized:
            if day not in DAYS_OF_WEEK:
                raise ValueError(f"days_of_week values must be one of {', '.join(DAYS_OF_WEEK)}")
        return normalized


class RatePlanResponse(BaseModel):
    rate_plan_id: int
    product_variant_id: int
    supplier_id: int
    valid_from: date
    valid_to: date
    inventory_model: str
    bucket_mode: str
    days_of_week: list[str] | None
    pool_id: int | None
    name: str | None


class GenerateRequest(BaseModel):
    default_daily_quantity: int = Field(ge=0)
    weekend_multiplier: float = Field(default=1.0, ge=0.0)


class GenerateResponse(BaseModel):
    rate_plan_id: int
    written_count: int = Field(ge=0)
    skipped_periods: list[str]
    estimated_total_units: int = Field(ge=0)
    buckets: list[BucketResponse]


class PreviewResponse(BaseModel):
    rate_plan_id: int
    valid_from: date
    valid_to: date
    days: int = Field(ge=0)
    estimated_total_units: int = Field(ge=0)


def _rate_plan_response(plan: RatePlan) -> RatePlanResponse:
    return RatePlanResponse(
        rate_plan_id=plan.rate_plan_id,
        product_variant_id=plan.product_variant_id,
        supplier_id=plan.supplier_id,
        valid_from=plan.valid_from,
        valid_to=plan.valid_to,
        inventory_model=plan.inventory_model,
        bucket_mode=plan.bucket_mode,
        days_of_week=list(plan.days_of_week) if plan.days_of_week else None,
        pool_id=plan.pool_id,
        name=plan.name,
    )


@router.post("", response_model=RatePlanResponse, status_code=status.HTTP_201_CREATED)
async def create_rate_plan(
    payload: CreateRatePlanRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: AllocationGenerationService = Depends(get_generation_service),
) -> RatePlanResponse:
    try:
        plan = service.create_rate_plan(
            context,
            RatePlan(
                rate_plan_id=None,
                org_id=context.org_id,
                product_variant_id=payload.product_variant_id,
                supplier_id=payload.supplier_id,
                valid_from=payload.valid_from,
                valid_to=payload.valid_to,
                inventory_model=payload.inventory_model,
                bucket_mode=payload.bucket_mode,
                days_of_week=tuple(payload.days_of_week) if payload.days_of_week else None,
                pool_id=payload.pool_id,
                name=payload.name,
            ),
        )
        return _rate_plan_response(plan)
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
        logger.exception("Unexpected rate plan creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create rate plan",
        ) from exc


@router.get("/{rate_plan_id}/allocations:preview", response_model=PreviewResponse)
async def preview_allocations(
    rate_plan_id: int,
    default_daily_quantity: int = Query(ge=0),
    context: TenantContext = Depends(get_tenant_context),
    service: AllocationGenerationService = Depends(get_generation_service),
) -> PreviewResponse:
    """Coarse estimate of total units; weekend multipliers are not applied."""
    try:
        preview = service.preview(context, rate_plan_id, default_daily_quantity)
        return PreviewResponse(
            rate_plan_id=preview.rate_plan_id,
            valid_from=preview.valid_from,
            valid_to=preview.valid_to,
            days=preview.days,
            estimated_total_units=preview.estimated_total_units,
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
        logger.exception("Unexpected allocation preview failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to preview allocations",
        ) from exc


@router.post("/{rate_plan_id}/allocations:generate", response_model=GenerateResponse)
async def generate_allocations(
    rate_plan_id: int,
    payload: GenerateRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: AllocationGenerationService = Depends(get_generation_service),
) -> GenerateResponse:
    """Materialize buckets; periods with bookings or holds are left untouched."""
    try:
        result = service.generate(
            context,
            rate_plan_id,
            payload.default_daily_quantity,
            payload.weekend_multiplier,
        )
        return GenerateResponse(
            rate_plan_id=result.rate_plan_id,
            written_count=result.written_count,
            skipped_periods=result.skipped_periods,
            estimated_total_units=result.estimated_total_units,
            buckets=[to_bucket_response(bucket) for bucket in result.buckets],
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
        logger.exception("Unexpected allocation generation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate allocations",
        ) from exc
