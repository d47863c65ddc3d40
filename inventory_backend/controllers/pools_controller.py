"""HTTP controller layer for inventory pools and weighted allocation."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from inventory_backend.controllers.common import BulkIdsRequest, BulkResponse, to_bulk_response
from inventory_backend.controllers.dependencies import (
    get_allocation_service,
    get_pool_service,
    get_tenant_context,
    get_utilization_service,
)
from inventory_backend.domain.errors import (
    ConsumptionConflict,
    EntityNotFoundError,
    InventoryValidationError,
)
from inventory_backend.domain.models import (
    POOL_STATUSES,
    POOL_TYPES,
    AllocationOutcome,
    InsufficientCapacity,
    InventoryPool,
    PoolVariant,
    TenantContext,
)
from inventory_backend.services.pool_service import PoolService
from inventory_backend.services.utilization_service import UtilizationService
from inventory_backend.services.weighting_service import PoolAllocationService
from inventory_backend.utils.config import get_settings
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/pools", tags=["pools"])


class PoolVariantRequest(BaseModel):
    product_variant_id: int = Field(gt=0)
    capacity_weight: float = Field(default=1.0, gt=0.0)
    cost_per_unit: float | None = Field(default=None, ge=0.0)
    sell_price_per_unit: float | None = Field(default=None, ge=0.0)
    priority: int | None = None
    auto_allocate: bool = True
    status: str = "active"

    def to_domain(self) -> PoolVariant:
        return PoolVariant(
            pool_variant_id=None,
            pool_id=None,
            product_variant_id=self.product_variant_id,
            capacity_weight=self.capacity_weight,
            cost_per_unit=self.cost_per_unit,
            sell_price_per_unit=self.sell_price_per_unit,
            priority=self.priority if self.priority is not None else settings.default_variant_priority,
            auto_allocate=self.auto_allocate,
            status=self.status,
        )


class PoolVariantResponse(BaseModel):
    pool_variant_id: int
    product_variant_id: int
    capacity_weight: float
    cost_per_unit: float | None
    sell_price_per_unit: float | None
    priority: int
    auto_allocate: bool
    status: str
    booked_units: int = Field(ge=0)
    consumed_capacity: float = Field(ge=0.0)


class CreatePoolRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    pool_type: str
    valid_from: date
    valid_to: date
    total_capacity: int | None = Field(default=None, ge=0)
    capacity_unit: str | None = None
    reference: str | None = None
    supplier_id: int | None = Field(default=None, gt=0)
    min_commitment: int | None = Field(default=None, ge=0)
    release_date: date | None = None
    cutoff_days: int | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = None
    variants: list[PoolVariantRequest] = Field(default_factory=list)

    @field_validator("pool_type")
    @classmethod
    def validate_pool_type(cls, value: str) -> str:
        if value not in POOL_TYPES:
            raise ValueError(f"pool_type must be one of {', '.join(POOL_TYPES)}")
        return value

    def to_domain(self) -> InventoryPool:
        return InventoryPool(
            pool_id=None,
            org_id=0,
            name=self.name,
            pool_type=self.pool_type,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            total_capacity=self.total_capacity,
            capacity_unit=self.capacity_unit or "",
            reference=self.reference,
            supplier_id=self.supplier_id,
            min_commitment=self.min_commitment,
            release_date=self.release_date,
            cutoff_days=self.cutoff_days,
            currency=(self.currency or settings.default_currency).upper(),
            notes=self.notes,
        )


class PoolResponse(BaseModel):
    pool_id: int
    name: str
    pool_type: str
    status: str
    valid_from: date
    valid_to: date
    total_capacity: int | None
    capacity_unit: str
    reference: str | None
    supplier_id: int | None
    min_commitment: int | None
    release_date: date | None
    cutoff_days: int | None
    currency: str
    notes: str | None
    variants: list[PoolVariantResponse]


class AllocationRequest(BaseModel):
    units: int = Field(gt=0)
    product_variant_id: int | None = Field(default=None, gt=0)
    stay_date: date | None = None
    dry_run: bool = False


class AllocationRejectionResponse(BaseModel):
    code: str
    detail: str
    requested_units: int | None = None
    required_capacity: float | None = None
    available_capacity: float | None = None


class AllocationResponse(BaseModel):
    accepted: bool
    pool_id: int
    requested_units: int = Field(gt=0)
    pool_variant_id: int | None
    product_variant_id: int | None
    consumed_capacity: float = Field(ge=0.0)
    remaining_capacity: float | None
    rejection: AllocationRejectionResponse | None = None


class VariantConsumptionResponse(BaseModel):
    pool_variant_id: int | None
    product_variant_id: int
    booked_units: int = Field(ge=0)
    capacity_weight: float
    consumed_capacity: float = Field(ge=0.0)


class PoolUtilizationResponse(BaseModel):
    pool_id: int
    capacity_unit: str
    total_capacity: int | None
    consumed_capacity: float = Field(ge=0.0)
    remaining_capacity: float | None
    utilization_percentage: float = Field(ge=0.0)
    tier: str
    variants: list[VariantConsumptionResponse]


class ReleaseWarningResponse(BaseModel):
    pool_id: int
    pool_name: str
    release_date: date
    days_until_release: int
    remaining_capacity: float
    potential_loss: float = Field(ge=0.0)
    currency: str


class RefreshStatusResponse(BaseModel):
    changed: list[PoolResponse]


class BulkStatusRequest(BulkIdsRequest):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        if value not in POOL_STATUSES:
            raise ValueError(f"status must be one of {', '.join(POOL_STATUSES)}")
        return value


def _variant_response(variant: PoolVariant) -> PoolVariantResponse:
    return PoolVariantResponse(
        pool_variant_id=variant.pool_variant_id,
        product_variant_id=variant.product_variant_id,
        capacity_weight=variant.capacity_weight,
        cost_per_unit=variant.cost_per_unit,
        sell_price_per_unit=variant.sell_price_per_unit,
        priority=variant.priority,
        auto_allocate=variant.auto_allocate,
        status=variant.status,
        booked_units=variant.booked_units,
        consumed_capacity=variant.consumed_capacity,
    )


def _pool_response(pool: InventoryPool, variants: list[PoolVariant]) -> PoolResponse:
    return PoolResponse(
        pool_id=pool.pool_id,
        name=pool.name,
        pool_type=pool.pool_type,
        status=pool.status,
        valid_from=pool.valid_from,
        valid_to=pool.valid_to,
        total_capacity=pool.total_capacity,
        capacity_unit=pool.capacity_unit,
        reference=pool.reference,
        supplier_id=pool.supplier_id,
        min_commitment=pool.min_commitment,
        release_date=pool.release_date,
        cutoff_days=pool.cutoff_days,
        currency=pool.currency,
        notes=pool.notes,
        variants=[_variant_response(variant) for variant in variants],
    )


def _allocation_response(outcome: AllocationOutcome) -> AllocationResponse:
    rejection = None
    if isinstance(outcome.rejection, InsufficientCapacity):
        rejection = AllocationRejectionResponse(
            code=outcome.rejection.code,
            detail=outcome.rejection.detail,
            requested_units=outcome.rejection.requested_units,
            required_capacity=outcome.rejection.required_capacity,
            available_capacity=outcome.rejection.available_capacity,
        )
    elif outcome.rejection is not None:
        rejection = AllocationRejectionResponse(code=outcome.rejection.code, detail=outcome.rejection.detail)
    return AllocationResponse(
        accepted=outcome.accepted,
        pool_id=outcome.pool_id,
        requested_units=outcome.requested_units,
        pool_variant_id=outcome.pool_variant_id,
        product_variant_id=outcome.product_variant_id,
        consumed_capacity=outcome.consumed_capacity,
        remaining_capacity=outcome.remaining_capacity,
        rejection=rejection,
    )


@router.post("", response_model=PoolResponse, status_code=status.HTTP_201_CREATED)
async def create_pool(
    payload: CreatePoolRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: PoolService = Depends(get_pool_service),
) -> PoolResponse:
    try:
        pool, variants = service.create_pool(
            context,
            payload.to_domain(),
            [item.to_domain() for item in payload.variants],
        )
        return _pool_response(pool, variants)
    except InventoryValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected pool creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create pool",
        ) from exc


@router.get("/release-warnings", response_model=list[ReleaseWarningResponse])
async def release_warnings(
    context: TenantContext = Depends(get_tenant_context),
    service: PoolService = Depends(get_pool_service),
) -> list[ReleaseWarningResponse]:
    """Pools approaching their release date with capacity still unsold."""
    try:
        return [
            ReleaseWarningResponse(
                pool_id=item.pool_id,
                pool_name=item.pool_name,
                release_date=item.release_date,
                days_until_release=item.days_until_release,
                remaining_capacity=item.remaining_capacity,
                potential_loss=item.potential_loss,
                currency=item.currency,
            )
            for item in service.release_warnings(context)
        ]
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected release warning failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute release warnings",
        ) from exc


@router.post("/refresh-status", response_model=RefreshStatusResponse)
async def refresh_status(
    context: TenantContext = Depends(get_tenant_context),
    service: PoolService = Depends(get_pool_service),
) -> RefreshStatusResponse:
    try:
        changed = service.refresh_pool_statuses(context)
        return RefreshStatusResponse(changed=[_pool_response(pool, []) for pool in changed])
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected pool status refresh failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to refresh pool statuses",
        ) from exc


@router.post("/bulk/status", response_model=BulkResponse)
async def bulk_status(
    payload: BulkStatusRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: PoolService = Depends(get_pool_service),
) -> BulkResponse:
    try:
        return to_bulk_response(service.bulk_update_status(context, payload.ids, payload.status))
    except InventoryValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected bulk status failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update pool statuses",
        ) from exc


@router.post("/bulk/delete", response_model=BulkResponse)
async def bulk_delete(
    payload: BulkIdsRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: PoolService = Depends(get_pool_service),
) -> BulkResponse:
    try:
        return to_bulk_response(service.bulk_delete(context, payload.ids))
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected bulk delete failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete pools",
        ) from exc


@router.post("/bulk/duplicate", response_model=BulkResponse)
async def bulk_duplicate(
    payload: BulkIdsRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: PoolService = Depends(get_pool_service),
) -> BulkResponse:
    try:
        return to_bulk_response(service.bulk_duplicate(context, payload.ids))
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected bulk duplicate failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to duplicate pools",
        ) from exc


@router.get("/{pool_id}", response_model=PoolResponse)
async def get_pool(
    pool_id: int,
    context: TenantContext = Depends(get_tenant_context),
    service: PoolService = Depends(get_pool_service),
) -> PoolResponse:
    try:
        pool, variants = service.get_pool(context, pool_id)
        return _pool_response(pool, variants)
    except EntityNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected pool lookup failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load pool",
        ) from exc


@router.post(
    "/{pool_id}/variants",
    response_model=PoolVariantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_variant(
    pool_id: int,
    payload: PoolVariantRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: PoolAllocationService = Depends(get_allocation_service),
) -> PoolVariantResponse:
    """Attach a variant or update its weight/priority; bookings are kept."""
    try:
        return _variant_response(service.add_variant(context, pool_id, payload.to_domain()))
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
        logger.exception("Unexpected pool variant failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save pool variant",
        ) from exc


@router.post("/{pool_id}/allocations", response_model=AllocationResponse)
async def allocate(
    pool_id: int,
    payload: AllocationRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: PoolAllocationService = Depends(get_allocation_service),
) -> AllocationResponse:
    """Consume pool capacity; rejections are reported in the body, not as errors."""
    try:
        if payload.dry_run:
            outcome = service.check_allocation(
                context,
                pool_id,
                payload.units,
                product_variant_id=payload.product_variant_id,
                stay_date=payload.stay_date,
            )
        else:
            outcome = service.allocate(
                context,
                pool_id,
                payload.units,
                product_variant_id=payload.product_variant_id,
                stay_date=payload.stay_date,
            )
        return _allocation_response(outcome)
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
    except ConsumptionConflict as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to allocate pool capacity",
        ) from exc


@router.get("/{pool_id}/utilization", response_model=PoolUtilizationResponse)
async def pool_utilization(
    pool_id: int,
    context: TenantContext = Depends(get_tenant_context),
    service: UtilizationService = Depends(get_utilization_service),
) -> PoolUtilizationResponse:
    try:
        report = service.for_pool(context, pool_id)
        return PoolUtilizationResponse(
            pool_id=report.pool_id,
            capacity_unit=report.capacity_unit,
            total_capacity=report.total_capacity,
            consumed_capacity=report.consumed_capacity,
            remaining_capacity=report.remaining_capacity,
            utilization_percentage=report.utilization_percentage,
            tier=report.tier,
            variants=[
                VariantConsumptionResponse(
                    pool_variant_id=item.pool_variant_id,
                    product_variant_id=item.product_variant_id,
                    booked_units=item.booked_units,
                    capacity_weight=item.capacity_weight,
                    consumed_capacity=item.consumed_capacity,
                )
                for item in report.variants
            ],
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
        logger.exception("Unexpected pool utilization failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute pool utilization",
        ) from exc
